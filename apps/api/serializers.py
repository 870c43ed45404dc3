from rest_framework import serializers
from apps.gps_devices.models import QueuedCommand


class QueuedCommandSerializer(serializers.ModelSerializer):
    """Serializer for QueuedCommand model; `data` is the payload piggybacked to the device"""
    device = serializers.CharField(source='device.unique_id', read_only=True)
    data = serializers.CharField(write_only=True, allow_blank=False, max_length=4096)
    payload = serializers.CharField(source='data', read_only=True)

    class Meta:
        model = QueuedCommand
        fields = ('id', 'device', 'type', 'data', 'payload', 'created_at')
        read_only_fields = ('id', 'created_at')
        extra_kwargs = {'type': {'required': False}}
