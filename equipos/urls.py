from django.urls import path
from . import views

app_name = 'equipos'

urlpatterns = [
    # Actas internas
    path('api/actas-internas/', views.ActaInternaCrearView.as_view(), name='acta-interna-crear'),
    path('api/actas-internas/<int:pk>/aceptar/', views.ActaInternaAceptarView.as_view(), name='acta-interna-aceptar'),
    path('api/actas-internas/<int:pk>/anular/', views.ActaInternaAnularView.as_view(), name='acta-interna-anular'),

    # Asignaciones
    path('api/asignaciones/', views.AsignacionCrearView.as_view(), name='asignacion-crear'),
    path('api/asignaciones/<int:pk>/devolver/', views.AsignacionDevolverView.as_view(), name='asignacion-devolver'),
    path('api/asignaciones/<int:pk>/firma-entrega/', views.AsignacionFirmaEntregaView.as_view(), name='asignacion-firma-entrega'),

    # Pacientes
    path('api/pacientes/<int:pk>/egreso/', views.PacienteEgresoView.as_view(), name='paciente-egreso'),

    # Equipos
    path('api/equipos/<int:pk>/estado/', views.EquipoEstadoView.as_view(), name='equipo-estado'),
]
