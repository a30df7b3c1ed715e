from django.conf import settings

from habits.services.timezones import normalize_time_zone


class TimeZoneMiddleware:
    """Attach the client's IANA zone (``X-Timezone`` header) as ``request.time_zone``."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        raw = request.META.get(settings.PUSHFORWARD_TIMEZONE_HEADER) or settings.PUSHFORWARD_DEFAULT_TIMEZONE
        request.time_zone = normalize_time_zone(raw)
        return self.get_response(request)
