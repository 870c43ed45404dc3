from functools import lru_cache

from django.conf import settings
from django.db import transaction
from django.http import HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .decoders import DecodeError, OsmAndProtocolDecoder
from .services import commands_manager, location_provider, position_store, session_manager

import logging

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_decoder():
    return OsmAndProtocolDecoder(
        settings.OSMAND_PROTOCOL_NAME,
        session_manager,
        commands_manager,
        location_provider,
        speed_unit=settings.OSMAND_SPEED_UNIT,
    )


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def osmand_report(request):
    """
    Ingest endpoint for OsmAnd-style trackers.
    The response body carries at most one queued command for the device.
    """
    try:
        # A dequeued command is only consumed once the position is stored
        with transaction.atomic():
            result = get_decoder().decode(request)
            if result.position is not None:
                location = position_store.store(result.position)
                logger.debug(f'Stored position {location.id} for device {location.device_id}')
    except DecodeError as e:
        logger.warning(f"Rejected report from {request.META.get('REMOTE_ADDR')}: {e}")
        return HttpResponseBadRequest()

    return result.response
