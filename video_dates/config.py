"""
Video date configuration: grace window and room provisioning knobs.
"""

# Both parties must join within this many minutes of the scheduled start
NO_SHOW_GRACE_MINUTES = 5

# Rooms expire this long after the scheduled end of the call
ROOM_EXPIRY_BUFFER_MINUTES = 30

MAX_PARTICIPANTS = 2

# Timeout (seconds) for every call to the room provider API
ROOM_PROVIDER_TIMEOUT_SECONDS = 10

# Max bookings handled per state in one sweep run
SWEEP_BATCH_SIZE = 200
