"""
Serializers for completion-service payloads and autopilot settings.
"""
from rest_framework import serializers

from seo.models import Recommendation
from .models import AutopilotSettings
from .policy import CHANGE_TYPES


class CompletionRecommendationSerializer(serializers.Serializer):
    """One item of the `recommendations` array the completion service returns."""
    pageUrl = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    pageId = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    category = serializers.ChoiceField(choices=[c for c, _ in Recommendation.CATEGORY_CHOICES])
    priority = serializers.ChoiceField(choices=[p for p, _ in Recommendation.PRIORITY_CHOICES])
    title = serializers.CharField(max_length=500)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    currentValue = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    suggestedValue = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    autoFixable = serializers.BooleanField(required=False, default=False)
    impactScore = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=10, default=None)
    confidence = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=100, default=None)
    field = serializers.ChoiceField(choices=list(CHANGE_TYPES), required=False, allow_blank=True,
                                    allow_null=True, default=None)


class CompletionResponseSerializer(serializers.Serializer):
    recommendations = CompletionRecommendationSerializer(many=True, allow_empty=True)


class CompletionSummarySerializer(serializers.Serializer):
    summary = serializers.CharField()
    healthTrend = serializers.ChoiceField(choices=['improving', 'stable', 'declining'])
    topPriority = serializers.CharField(required=False, allow_blank=True, default='')


class AutopilotSettingsSerializer(serializers.ModelSerializer):
    allowed_change_types = serializers.ListField(
        child=serializers.ChoiceField(choices=list(CHANGE_TYPES)), allow_empty=True,
    )

    class Meta:
        model = AutopilotSettings
        fields = (
            'enabled', 'allowed_change_types', 'confidence_threshold', 'max_daily_changes',
            'high_traffic_threshold', 'auto_revert_threshold', 'notify_on_apply', 'notify_on_revert',
            'updated_at',
        )
        read_only_fields = ('updated_at',)

    def validate_allowed_change_types(self, value):
        # Preserve order, drop duplicates.
        return list(dict.fromkeys(value))
