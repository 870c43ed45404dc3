from django.db import models

from .position import Network, Position


class Device(models.Model):
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('inactive', 'Inactive'),
        ('maintenance', 'Maintenance'),
    ]

    name = models.CharField(max_length=100)
    unique_id = models.CharField(max_length=128, unique=True, help_text='Identifier the tracker reports as id/deviceid')
    protocol = models.CharField(max_length=32, blank=True, default='')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    attributes = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.unique_id})"

    @property
    def is_enabled(self):
        return self.status != 'inactive'


class QueuedCommand(models.Model):
    """
    Outbound instruction waiting to be piggybacked on the device's next report.
    """
    TYPE_CUSTOM = 'custom'

    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name='queued_commands')
    type = models.CharField(max_length=50, default=TYPE_CUSTOM)
    attributes = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.type} -> {self.device.unique_id}"

    @property
    def data(self):
        return self.attributes.get('data')


class LocationData(models.Model):
    """
    Decoded position handed off by the ingest endpoint.
    """
    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name='locations')
    protocol = models.CharField(max_length=32)
    server_time = models.DateTimeField(db_index=True)
    device_time = models.DateTimeField(null=True, blank=True)
    fix_time = models.DateTimeField(null=True, blank=True, db_index=True)
    outdated = models.BooleanField(default=False)
    valid = models.BooleanField(default=False)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    altitude = models.FloatField(null=True, blank=True)
    speed = models.FloatField(null=True, blank=True, help_text='Speed in knots')
    course = models.FloatField(null=True, blank=True)
    accuracy = models.FloatField(null=True, blank=True)
    network = models.JSONField(null=True, blank=True)
    attributes = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-fix_time', '-id']
        verbose_name = 'Location Data'
        verbose_name_plural = 'Location Data'
        indexes = [
            models.Index(fields=['device', '-fix_time'], name='gps_location_device_fix_idx'),
        ]

    def __str__(self):
        return f"{self.device.name} at ({self.latitude}, {self.longitude})"

    @classmethod
    def from_position(cls, position: Position):
        return cls(
            device_id=position.device_id,
            protocol=position.protocol,
            server_time=position.server_time,
            device_time=position.device_time,
            fix_time=position.fix_time,
            outdated=position.outdated,
            valid=position.valid,
            latitude=position.latitude,
            longitude=position.longitude,
            altitude=position.altitude,
            speed=position.speed,
            course=position.course,
            accuracy=position.accuracy,
            network=position.to_dict()['network'] if position.network is not None else None,
            attributes=dict(position.attributes),
        )

    def to_position(self) -> Position:
        return Position(
            protocol=self.protocol,
            device_id=self.device_id,
            server_time=self.server_time,
            device_time=self.device_time,
            fix_time=self.fix_time,
            outdated=self.outdated,
            valid=self.valid,
            latitude=self.latitude,
            longitude=self.longitude,
            altitude=self.altitude,
            speed=self.speed,
            course=self.course,
            accuracy=self.accuracy,
            network=Network.from_dict(self.network) if self.network else None,
            attributes=dict(self.attributes),
        )
