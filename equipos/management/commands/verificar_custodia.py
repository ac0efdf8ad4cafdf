"""
Comando para auditar la consistencia de la custodia y las asignaciones.
"""

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.db.models import Count, Exists, OuterRef
from equipos.models import ActaInterna, ActaInternaItem, Asignacion, Equipo, Paciente
from equipos.services.inventario import fijar_bloqueo_custodia


class Command(BaseCommand):
    help = 'Verifica que equipos, actas internas y asignaciones sean consistentes'

    def add_arguments(self, parser):
        parser.add_argument(
            '--corregir',
            action='store_true',
            help='Libera los equipos que apuntan a actas internas ya aceptadas o anuladas'
        )
        parser.add_argument(
            '--estricto',
            action='store_true',
            help='Termina con error si encuentra inconsistencias'
        )

    def handle(self, *args, **options):
        problemas = []

        # 1. Equipos pendientes de un acta que ya no está ENVIADA
        obsoletos = list(Equipo.objects.filter(
            acta_interna_pendiente__isnull=False
        ).exclude(
            acta_interna_pendiente__estado=ActaInterna.Estado.ENVIADA
        ).select_related('acta_interna_pendiente'))
        for equipo in obsoletos:
            problemas.append(
                f'{equipo.codigo_inventario}: apunta al acta interna '
                f'{equipo.acta_interna_pendiente.numero_display} en estado {equipo.acta_interna_pendiente.estado}'
            )

        # 2. Equipos pendientes de un acta que no los incluye
        incluido = ActaInternaItem.objects.filter(
            acta=OuterRef('acta_interna_pendiente'),
            equipo=OuterRef('pk')
        )
        for equipo in Equipo.objects.filter(
            acta_interna_pendiente__estado=ActaInterna.Estado.ENVIADA
        ).filter(~Exists(incluido)):
            problemas.append(
                f'{equipo.codigo_inventario}: pendiente de un acta interna que no lo incluye'
            )

        # 3. Ítems de actas ENVIADAS cuyo equipo ya no apunta al acta
        for acta in ActaInterna.objects.filter(estado=ActaInterna.Estado.ENVIADA).prefetch_related('items__equipo'):
            for item in acta.items.all():
                if item.equipo.acta_interna_pendiente_id != acta.pk:
                    problemas.append(
                        f'Acta interna {acta.numero_display}: el equipo {item.codigo_inventario} ya no está pendiente'
                    )

        # 4. Más de una asignación activa por equipo
        duplicadas = Asignacion.objects.filter(
            estado=Asignacion.Estado.ACTIVA
        ).values('equipo__codigo_inventario').annotate(
            total=Count('id')
        ).filter(total__gt=1)
        for fila in duplicadas:
            problemas.append(
                f"{fila['equipo__codigo_inventario']}: {fila['total']} asignaciones activas"
            )

        # 5. Pacientes egresados con equipos asignados
        for paciente in Paciente.objects.filter(
            estado=Paciente.Estado.EGRESADO,
            asignaciones__estado=Asignacion.Estado.ACTIVA
        ).distinct():
            problemas.append(
                f'Paciente {paciente.consecutivo} ({paciente.nombre_completo}): egresado con equipos asignados'
            )

        if not problemas:
            self.stdout.write(self.style.SUCCESS('Custodia consistente: no se encontraron problemas'))
            return

        for problema in problemas:
            self.stdout.write(self.style.WARNING(f'  - {problema}'))
        self.stdout.write(f'Total de inconsistencias: {len(problemas)}')

        if options['corregir'] and obsoletos:
            with transaction.atomic():
                for equipo in Equipo.objects.select_for_update().filter(
                    pk__in=[e.pk for e in obsoletos]
                ).order_by('pk'):
                    fijar_bloqueo_custodia(
                        equipo,
                        custodio=equipo.custodio,
                        acta_pendiente=None,
                        disponible_para_entrega=False,
                    )
            self.stdout.write(self.style.SUCCESS(
                f'{len(obsoletos)} equipo(s) liberados de actas internas cerradas (siguen bloqueados para entrega)'
            ))

        if options['estricto']:
            raise CommandError(f'Se encontraron {len(problemas)} inconsistencias de custodia')
