from django import forms

from billing.errors import RateTableError
from billing.pricing import validate_call_rates

from .models import EarnerProfile


class EarnerProfileAdminForm(forms.ModelForm):
    """Staff edits go through the same rate-table rules as the earner's own settings."""

    class Meta:
        model = EarnerProfile
        fields = "__all__"

    def clean(self):
        cleaned_data = super().clean()
        rates = {
            15: cleaned_data.get("video_15min_rate"),
            30: cleaned_data.get("video_30min_rate"),
            60: cleaned_data.get("video_60min_rate"),
            90: cleaned_data.get("video_90min_rate"),
        }
        if any(rate is None for rate in rates.values()):
            return cleaned_data
        try:
            validate_call_rates(rates)
        except RateTableError as e:
            raise forms.ValidationError(e.errors)
        return cleaned_data
