from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import QueuedCommandSerializer
from apps.gps_devices.models import Device, QueuedCommand
from apps.gps_devices.services import commands_manager


class HealthCheckView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({'ok': True, 'service': 'Fleet Gateway API', 'version': 'v1'})


class DeviceCommandsView(APIView):
    """
    Pending commands of a device. Queued commands are delivered, and removed,
    with the device's next OsmAnd report.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, unique_id):
        device = Device.objects.filter(unique_id=unique_id).first()
        if not device:
            return Response({'ok': False, 'error': 'device_not_found'}, status=status.HTTP_404_NOT_FOUND)

        commands = QueuedCommand.objects.filter(device=device).select_related('device')
        return Response({'ok': True, 'commands': QueuedCommandSerializer(commands, many=True).data})

    def post(self, request, unique_id):
        device = Device.objects.filter(unique_id=unique_id).first()
        if not device:
            return Response({'ok': False, 'error': 'device_not_found'}, status=status.HTTP_404_NOT_FOUND)

        serializer = QueuedCommandSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({'ok': False, 'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

        command = commands_manager.queue_command(
            device.id,
            serializer.validated_data['data'],
            type=serializer.validated_data.get('type') or QueuedCommand.TYPE_CUSTOM,
        )
        return Response(
            {'ok': True, 'command': QueuedCommandSerializer(command).data},
            status=status.HTTP_201_CREATED,
        )
