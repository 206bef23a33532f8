"""
Analytics Module

Motor de agregación financiera y KPIs del dashboard.

Convierte entradas de stock (compras), salidas de stock (ventas), gastos y
encomiendas en series mensuales, KPIs con metas y variaciones de periodo
(últimos 30 días y mes contra mes), detrás de una caché con TTL que se
invalida cuando cambian las tablas observadas.

Pipeline (de las hojas a la raíz):
- calculator.py -> valor de línea y de documento, división segura
- bucketing.py -> buckets por mes calendario
- aggregator.py -> totales de ventas, gastos y ganancia
- kpis.py -> catálogo de KPIs
- deltas.py -> variaciones 30 días / mes contra mes
- targets.py -> metas configuradas por empresa
- cache.py -> caché con TTL e invalidación por etiquetas
- service.py -> orquestación asíncrona sobre el repositorio
"""
