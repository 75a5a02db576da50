from django import forms


class EarningsForm(forms.Form):
    month = forms.IntegerField(min_value=1, max_value=12)
    year = forms.IntegerField(min_value=1)
    amount = forms.DecimalField(max_digits=10, decimal_places=2, min_value=0)


class SessionRangeForm(forms.Form):
    start_date = forms.DateTimeField(required=False)
    end_date = forms.DateTimeField(required=False)

    def clean(self):
        cleaned_data = super().clean()
        start_date = cleaned_data.get('start_date')
        end_date = cleaned_data.get('end_date')
        if start_date and end_date and start_date > end_date:
            raise forms.ValidationError("End date must be after start date.")
        return cleaned_data


class ChartForm(forms.Form):
    months = forms.IntegerField(min_value=1, max_value=24, required=False)
