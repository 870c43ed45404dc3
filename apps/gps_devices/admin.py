from django.contrib import admin

from .models import Device, LocationData, QueuedCommand


class QueuedCommandInline(admin.TabularInline):
    model = QueuedCommand
    extra = 0
    fields = ('type', 'attributes', 'created_at')
    readonly_fields = ('created_at',)


@admin.register(Device)
class DeviceAdmin(admin.ModelAdmin):
    list_display = ('name', 'unique_id', 'protocol', 'status', 'created_at')
    list_filter = ('status', 'protocol')
    search_fields = ('name', 'unique_id')
    inlines = [QueuedCommandInline]


@admin.register(QueuedCommand)
class QueuedCommandAdmin(admin.ModelAdmin):
    list_display = ('device', 'type', 'data', 'created_at')
    list_filter = ('type',)
    search_fields = ('device__unique_id', 'device__name')


@admin.register(LocationData)
class LocationDataAdmin(admin.ModelAdmin):
    list_display = ('device', 'fix_time', 'latitude', 'longitude', 'speed', 'valid', 'outdated')
    list_filter = ('valid', 'outdated', 'protocol')
    search_fields = ('device__unique_id', 'device__name')
    date_hierarchy = 'fix_time'
    readonly_fields = ('server_time',)
