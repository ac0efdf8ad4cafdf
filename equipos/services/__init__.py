"""
Capa de servicios (lógica de negocio).

Este paquete contiene el motor de custodia y préstamo separado de las vistas:
- consecutivos: Numeración de actas, titulares y códigos de inventario
- inventario: Registro de equipos y cambios de estado intrínseco
- estado: Cálculo del estado efectivo y de la elegibilidad para préstamo
- asignaciones: Entrega, devolución, firma del visitador y egreso de pacientes
- actas_internas: Traslado de custodia ingeniero -> auxiliar administrativa
- titulares: Registro de pacientes y profesionales

Los services lanzan las excepciones de equipos.exceptions; nunca dejan
escrituras parciales.
"""
