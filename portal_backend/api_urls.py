"""
API URL routing for portal_backend.
All API endpoints are prefixed with /api/v1/
"""
from django.urls import path
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt


# Health check endpoint
def health_check(request):
    return JsonResponse({"status": "healthy"})


def _lazy(module, attr):
    """Lazy view import to avoid AppRegistryNotReady."""
    @csrf_exempt
    def view(*args, **kwargs):
        import importlib
        mod = importlib.import_module(module)
        return getattr(mod, attr)(*args, **kwargs)
    return view


urlpatterns = [
    # Health check (no auth) - GET /api/v1/health/
    path('health/', health_check),
    # --- Optimization runs ---
    path('optimize/', _lazy('optimizer.views', 'trigger_optimization'), name='optimize-trigger'),
    path('optimize/runs/', _lazy('optimizer.views', 'run_list'), name='optimize-run-list'),
    path('optimize/runs/<uuid:run_id>/', _lazy('optimizer.views', 'run_detail'), name='optimize-run-detail'),
    # --- Autopilot ---
    path('sites/<int:site_id>/autopilot/settings/', _lazy('optimizer.views', 'autopilot_settings'),
         name='autopilot-settings'),
    path('sites/<int:site_id>/autopilot/queue/', _lazy('optimizer.views', 'autopilot_queue_list'),
         name='autopilot-queue-list'),
    path('sites/<int:site_id>/autopilot/queue/<uuid:item_id>/approve/',
         _lazy('optimizer.views', 'autopilot_queue_approve'), name='autopilot-queue-approve'),
    path('sites/<int:site_id>/autopilot/queue/<uuid:item_id>/reject/',
         _lazy('optimizer.views', 'autopilot_queue_reject'), name='autopilot-queue-reject'),
    path('sites/<int:site_id>/autopilot/queue/<uuid:item_id>/apply/',
         _lazy('optimizer.views', 'autopilot_queue_apply'), name='autopilot-queue-apply'),
    # --- Recommendations ---
    path('recommendations/', _lazy('seo.views', 'recommendation_list'), name='recommendation-list'),
    path('recommendations/<uuid:rec_id>/dismiss/', _lazy('seo.views', 'recommendation_dismiss'),
         name='recommendation-dismiss'),
    # --- Alerts ---
    path('alerts/', _lazy('seo.views', 'alert_list'), name='alert-list'),
    path('alerts/<uuid:alert_id>/resolve/', _lazy('seo.views', 'alert_resolve'), name='alert-resolve'),
]
