from datetime import datetime

from django.core.validators import RegexValidator
from django.utils import timezone
from rest_framework import serializers

NPN_VALIDATOR = RegexValidator(r"^\d{1,10}$", "NPN must be numeric (max 10 digits)")
SSN_LAST4_VALIDATOR = RegexValidator(r"^\d{4}$", "SSN must be exactly 4 digits")
DOB_VALIDATOR = RegexValidator(r"^\d{2}/\d{2}/\d{4}$", "Date of birth must be MM/DD/YYYY")


class SubjectInputSerializer(serializers.Serializer):
    """Champs d'identité du sujet. Toutes les erreurs de champ sont renvoyées ensemble."""
    lastName = serializers.CharField(max_length=100)
    npn = serializers.CharField(max_length=10, validators=[NPN_VALIDATOR])
    ssn = serializers.CharField(max_length=4, validators=[SSN_LAST4_VALIDATOR])
    dob = serializers.CharField(max_length=10, validators=[DOB_VALIDATOR])

    def validate_dob(self, value):
        try:
            born = datetime.strptime(value, "%m/%d/%Y").date()
        except ValueError:
            raise serializers.ValidationError("Date of birth is not a valid date")
        if born > timezone.now().date():
            raise serializers.ValidationError("Date of birth cannot be in the future")
        return value

    def subject(self) -> dict:
        d = self.validated_data
        return {"last_name": d["lastName"], "npn": d["npn"], "ssn_last4": d["ssn"], "dob": d["dob"]}

    def subject_key(self) -> str:
        return f"npn:{self.validated_data['npn']}"


class DocumentUploadSerializer(serializers.Serializer):
    file = serializers.FileField()
