"""
API endpoints for AI recommendations and site alerts.
"""
import logging
import math

from django.db.models import Count
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework import status

from sites.models import Site
from seo.models import Recommendation, Alert

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


def _site_from_query(request):
    site_id = request.query_params.get('site_id')
    if not site_id:
        return None, _error('MISSING_PARAM', 'site_id is required.', status.HTTP_400_BAD_REQUEST)
    return _get_site_or_error(request, site_id)


def _paginate(request, qs):
    page = max(1, int(request.query_params.get('page', 1)))
    per_page = max(1, min(int(request.query_params.get('per_page', 25)), 100))
    total = qs.count()
    total_pages = max(1, math.ceil(total / per_page))
    offset = (page - 1) * per_page
    return qs[offset:offset + per_page], {
        'total': total,
        'page': page,
        'per_page': per_page,
        'total_pages': total_pages,
    }


def _serialize_recommendation(rec):
    return {
        'id': str(rec.id),
        'page_id': rec.page_id,
        'page_url': rec.page_url,
        'category': rec.category,
        'priority': rec.priority,
        'title': rec.title,
        'description': rec.description,
        'field_name': rec.field_name,
        'current_value': rec.current_value,
        'suggested_value': rec.suggested_value,
        'confidence': rec.confidence,
        'impact_score': rec.impact_score,
        'auto_fixable': rec.auto_fixable,
        'status': rec.status,
        'ai_model': rec.ai_model,
        'generated_at': rec.generated_at.isoformat() if rec.generated_at else None,
        'reviewed_at': rec.reviewed_at.isoformat() if rec.reviewed_at else None,
    }


def _serialize_alert(alert):
    return {
        'id': str(alert.id),
        'alert_type': alert.alert_type,
        'severity': alert.severity,
        'title': alert.title,
        'message': alert.message,
        'data': alert.data,
        'status': alert.status,
        'triggered_at': alert.triggered_at.isoformat() if alert.triggered_at else None,
        'resolved_at': alert.resolved_at.isoformat() if alert.resolved_at else None,
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def recommendation_list(request):
    """
    GET /api/v1/recommendations?site_id={id}
    List AI recommendations, filterable by status, priority and category.
    """
    site, err = _site_from_query(request)
    if err:
        return err

    qs = Recommendation.objects.filter(site=site)
    for param in ('status', 'priority', 'category'):
        value = request.query_params.get(param)
        if value:
            qs = qs.filter(**{param: value})

    items, meta = _paginate(request, qs.order_by('-generated_at'))

    by_status = {}
    for row in Recommendation.objects.filter(site=site).values('status').annotate(count=Count('id')):
        by_status[row['status']] = row['count']
    meta['by_status'] = by_status

    return Response({
        'data': [_serialize_recommendation(r) for r in items],
        'meta': meta,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def recommendation_dismiss(request, rec_id):
    """POST /api/v1/recommendations/{id}/dismiss — Dismiss a pending recommendation."""
    rec = get_object_or_404(Recommendation, id=rec_id)
    site, err = _get_site_or_error(request, rec.site_id)
    if err:
        return err

    if rec.status != 'pending':
        return _error(
            'INVALID_STATUS',
            f'Cannot dismiss a recommendation with status "{rec.status}".',
            status.HTTP_409_CONFLICT,
        )

    rec.status = 'dismissed'
    rec.reviewed_at = timezone.now()
    rec.save(update_fields=['status', 'reviewed_at', 'updated_at'])
    logger.info('Recommendation %s dismissed by user %s', rec.id, request.user.id)

    return Response({'data': _serialize_recommendation(rec)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def alert_list(request):
    """
    GET /api/v1/alerts?site_id={id}
    List site alerts, filterable by status and severity.
    """
    site, err = _site_from_query(request)
    if err:
        return err

    qs = Alert.objects.filter(site=site)
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter)
    severity = request.query_params.get('severity')
    if severity:
        qs = qs.filter(severity=severity)

    items, meta = _paginate(request, qs.order_by('-triggered_at'))
    meta['active'] = Alert.objects.filter(site=site, status='active').count()

    return Response({
        'data': [_serialize_alert(a) for a in items],
        'meta': meta,
    })


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def alert_resolve(request, alert_id):
    """PUT /api/v1/alerts/{id}/resolve — Mark an alert resolved."""
    alert = get_object_or_404(Alert, id=alert_id)
    site, err = _get_site_or_error(request, alert.site_id)
    if err:
        return err

    if alert.status != 'resolved':
        alert.status = 'resolved'
        alert.resolved_at = timezone.now()
        alert.save(update_fields=['status', 'resolved_at'])

    return Response({'data': _serialize_alert(alert)})
