"""
API endpoints for optimization runs and the autopilot queue.
"""
import logging
import math

from django.db.models import Count
from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework import status

from integrations.wordpress_webhook import ChangePublishError
from sites.models import Site
from . import queue
from .exceptions import DailyCapReached, InvalidTransition, RunInProgress
from .models import AutopilotSettings, OptimizationRun, QueueItem
from .orchestrator import MODES, dispatch_run
from .serializers import AutopilotSettingsSerializer
from .services import default_services

logger = logging.getLogger(__name__)


def _error(code, message, http_status, detail=None):
    return Response({
        'error': {'code': code, 'message': message, 'detail': detail, 'status': http_status}
    }, status=http_status)


def _get_site_or_error(request, site_id):
    site = get_object_or_404(Site, id=site_id)
    if site.user != request.user:
        return None, _error('FORBIDDEN', 'Permission denied.', status.HTTP_403_FORBIDDEN)
    return site, None


def _iso(value):
    return value.isoformat() if value else None


def _serialize_run(run, include_results=False):
    data = {
        'id': str(run.id),
        'site_id': run.site_id,
        'mode': run.mode,
        'status': run.status,
        'recommendations_generated': run.recommendations_generated,
        'auto_applied': run.auto_applied,
        'alerts_raised': run.alerts_raised,
        'ai_model': run.ai_model,
        'error_message': run.error_message,
        'started_at': _iso(run.started_at),
        'completed_at': _iso(run.completed_at),
    }
    if include_results:
        data['results'] = run.results
    return data


def _serialize_queue_item(item):
    return {
        'id': str(item.id),
        'recommendation_id': str(item.recommendation_id) if item.recommendation_id else None,
        'page_id': item.page_id,
        'run_id': str(item.run_id) if item.run_id else None,
        'change_type': item.change_type,
        'field': item.field,
        'old_value': item.old_value,
        'suggested_value': item.suggested_value,
        'ai_confidence': item.ai_confidence,
        'ai_reasoning': item.ai_reasoning,
        'is_high_traffic': item.is_high_traffic,
        'requires_approval': item.requires_approval,
        'status': item.status,
        'approved_by': item.approved_by,
        'approved_at': _iso(item.approved_at),
        'applied_by': item.applied_by,
        'applied_at': _iso(item.applied_at),
        'monitor_until': _iso(item.monitor_until),
        'reverted_at': _iso(item.reverted_at),
        'revert_reason': item.revert_reason,
        'last_error': item.last_error,
        'created_at': _iso(item.created_at),
    }


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def trigger_optimization(request):
    """
    POST /api/v1/optimize
    Body: { "siteId": "...", "mode": "full" | "quick" }
    Starts a background optimization run. Poll the run for its outcome.
    """
    site_id = request.data.get('siteId')
    mode = request.data.get('mode') or 'full'

    if not site_id:
        return Response({'error': 'siteId required'}, status=status.HTTP_400_BAD_REQUEST)
    if mode not in MODES:
        return Response({'error': f'mode must be one of: {", ".join(MODES)}'}, status=status.HTTP_400_BAD_REQUEST)

    site = Site.objects.filter(id=site_id).first() if str(site_id).isdigit() else None
    if site is None:
        return _error('SITE_NOT_FOUND', f'Site not found: {site_id}', status.HTTP_404_NOT_FOUND)
    if site.user != request.user:
        return _error('FORBIDDEN', 'Permission denied.', status.HTTP_403_FORBIDDEN)

    try:
        run = dispatch_run(site, mode)
    except RunInProgress as e:
        return _error('RUN_IN_PROGRESS', str(e), status.HTTP_409_CONFLICT, detail={'run_id': str(e.run_id)})
    except Exception as e:
        logger.exception('Failed to start optimization for site %s', site_id)
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response({
        'success': True,
        'message': 'Auto-optimization started',
        'mode': mode,
        'run_id': str(run.id),
    }, status=status.HTTP_202_ACCEPTED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def run_list(request):
    """
    GET /api/v1/optimize/runs?site_id={id}
    List optimization runs for a site, newest first.
    """
    site_id = request.query_params.get('site_id')
    if not site_id:
        return _error('MISSING_PARAM', 'site_id is required.', status.HTTP_400_BAD_REQUEST)
    site, err = _get_site_or_error(request, site_id)
    if err:
        return err

    qs = OptimizationRun.objects.filter(site=site)
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter)
    qs = qs.order_by('-started_at')

    page = max(1, int(request.query_params.get('page', 1)))
    per_page = max(1, min(int(request.query_params.get('per_page', 25)), 100))
    total = qs.count()
    offset = (page - 1) * per_page

    return Response({
        'data': [_serialize_run(r) for r in qs[offset:offset + per_page]],
        'meta': {
            'total': total,
            'page': page,
            'per_page': per_page,
            'total_pages': max(1, math.ceil(total / per_page)),
        },
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def run_detail(request, run_id):
    """GET /api/v1/optimize/runs/{id} — Run status with per-module results."""
    run = get_object_or_404(OptimizationRun, id=run_id)
    site = Site.objects.filter(id=run.site_id).first()
    if site is None or site.user != request.user:
        return _error('FORBIDDEN', 'Permission denied.', status.HTTP_403_FORBIDDEN)
    return Response({'data': _serialize_run(run, include_results=True)})


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def autopilot_settings(request, site_id):
    """
    GET /api/v1/sites/{id}/autopilot/settings
    PUT /api/v1/sites/{id}/autopilot/settings
    Read or update a site's autopilot configuration. Created with defaults on first access.
    """
    site, err = _get_site_or_error(request, site_id)
    if err:
        return err

    settings_obj = AutopilotSettings.for_site(site)
    if request.method == 'GET':
        return Response({'data': AutopilotSettingsSerializer(settings_obj).data})

    serializer = AutopilotSettingsSerializer(settings_obj, data=request.data, partial=True)
    if not serializer.is_valid():
        return _error('VALIDATION_ERROR', 'Invalid autopilot settings.', status.HTTP_400_BAD_REQUEST,
                      detail=serializer.errors)
    serializer.save()
    logger.info('Autopilot settings for site %s updated by user %s', site.id, request.user.id)
    return Response({'data': serializer.data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def autopilot_queue_list(request, site_id):
    """
    GET /api/v1/sites/{id}/autopilot/queue?status=pending,approved
    List queue items, optionally filtered by a comma-separated status list.
    """
    site, err = _get_site_or_error(request, site_id)
    if err:
        return err

    qs = QueueItem.objects.filter(site=site)
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status__in=[s.strip() for s in status_filter.split(',') if s.strip()])
    qs = qs.order_by('-created_at')

    page = max(1, int(request.query_params.get('page', 1)))
    per_page = max(1, min(int(request.query_params.get('per_page', 25)), 100))
    total = qs.count()
    offset = (page - 1) * per_page

    by_status = {}
    for row in QueueItem.objects.filter(site=site).values('status').annotate(count=Count('id')):
        by_status[row['status']] = row['count']

    return Response({
        'data': [_serialize_queue_item(i) for i in qs[offset:offset + per_page]],
        'meta': {
            'total': total,
            'page': page,
            'per_page': per_page,
            'total_pages': max(1, math.ceil(total / per_page)),
            'by_status': by_status,
        },
    })


def _get_item_or_error(request, site_id, item_id):
    site, err = _get_site_or_error(request, site_id)
    if err:
        return None, None, err
    item = get_object_or_404(QueueItem, id=item_id, site=site)
    return site, item, None


def _transition_error(e):
    return _error('INVALID_TRANSITION', str(e), status.HTTP_409_CONFLICT,
                  detail={'status': e.status, 'action': e.action})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def autopilot_queue_approve(request, site_id, item_id):
    """POST /api/v1/sites/{id}/autopilot/queue/{item_id}/approve — pending → approved."""
    site, item, err = _get_item_or_error(request, site_id, item_id)
    if err:
        return err
    try:
        item = queue.approve(item.id, request.user.email)
    except InvalidTransition as e:
        return _transition_error(e)
    return Response({'data': _serialize_queue_item(item)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def autopilot_queue_reject(request, site_id, item_id):
    """POST /api/v1/sites/{id}/autopilot/queue/{item_id}/reject — pending → rejected."""
    site, item, err = _get_item_or_error(request, site_id, item_id)
    if err:
        return err
    try:
        item = queue.reject(item.id, request.user.email)
    except InvalidTransition as e:
        return _transition_error(e)
    return Response({'data': _serialize_queue_item(item)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def autopilot_queue_apply(request, site_id, item_id):
    """
    POST /api/v1/sites/{id}/autopilot/queue/{item_id}/apply
    Apply now. Skips the confidence and traffic gates, never the daily cap.
    """
    site, item, err = _get_item_or_error(request, site_id, item_id)
    if err:
        return err

    autopilot = AutopilotSettings.for_site(site)
    try:
        item = queue.apply_item(item.id, default_services(), autopilot, manual=True, actor=request.user.email)
    except InvalidTransition as e:
        return _transition_error(e)
    except DailyCapReached as e:
        return _error('DAILY_CAP_REACHED', str(e), status.HTTP_409_CONFLICT,
                      detail={'max_daily_changes': e.cap})
    except ChangePublishError as e:
        logger.error('Publishing queue item %s failed: %s', item.id, e)
        queue.record_failure(item.id, str(e))
        return _error('PUBLISH_FAILED', 'The site did not accept the change.', status.HTTP_502_BAD_GATEWAY,
                      detail=str(e))
    return Response({'data': _serialize_queue_item(item)})
