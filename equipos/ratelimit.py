"""
Rate limiting para los endpoints JSON de custodia.

Limita la tasa de peticiones por usuario e IP usando el cache de Django,
para proteger contra:
- Envíos repetidos de actas o asignaciones desde el cliente
- Abuso de la API de consulta de estado
"""

from django.http import JsonResponse
from django.core.cache import cache
from django.conf import settings
import time


# Configuración de límites por defecto
RATE_LIMITS = {
    # Operaciones que escriben custodia o asignaciones: 30 peticiones por minuto
    'custodia': {'requests': 30, 'window': 60},
    # Consultas de estado: 60 peticiones por minuto
    'consulta': {'requests': 60, 'window': 60},
}


def get_client_ip(request):
    """Obtiene la IP real del cliente, considerando proxies."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


class RateLimitMixin:
    """
    Mixin para aplicar rate limiting a Class-Based Views.

    Uso:
        class MiVista(RateLimitMixin, View):
            ratelimit_key = 'custodia'
            ratelimit_method = 'POST'  # Opcional, default 'ALL'
    """
    ratelimit_key = 'custodia'
    ratelimit_method = 'ALL'
    ratelimit_rate = None  # Tupla (requests, window) o None para usar default

    def dispatch(self, request, *args, **kwargs):
        if not getattr(settings, 'RATELIMIT_ENABLED', True):
            return super().dispatch(request, *args, **kwargs)

        # Verificar si aplicar límite según método
        if self.ratelimit_method != 'ALL' and request.method != self.ratelimit_method:
            return super().dispatch(request, *args, **kwargs)

        # Obtener configuración
        if self.ratelimit_rate:
            max_requests, window = self.ratelimit_rate
        else:
            limit_config = RATE_LIMITS.get(self.ratelimit_key, RATE_LIMITS['custodia'])
            max_requests = limit_config['requests']
            window = limit_config['window']

        # Generar clave única
        client_ip = get_client_ip(request)
        user_id = request.user.id if request.user.is_authenticated else 'anon'
        cache_key = f'ratelimit:{self.ratelimit_key}:{user_id}:{client_ip}'

        # Verificar historial
        request_history = cache.get(cache_key, [])
        now = time.time()
        request_history = [t for t in request_history if now - t < window]

        if len(request_history) >= max_requests:
            retry_after = max(int(window - (now - request_history[0])), 1)
            response = JsonResponse(
                {
                    'error': 'resource-exhausted',
                    'mensaje': f'Demasiadas peticiones. Intente de nuevo en {retry_after} segundos.',
                },
                status=429
            )
            response['Retry-After'] = str(retry_after)
            return response

        # Registrar petición
        request_history.append(now)
        cache.set(cache_key, request_history, window)

        return super().dispatch(request, *args, **kwargs)
