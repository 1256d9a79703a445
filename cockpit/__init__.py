"""
Metric Cockpit - metric-to-query compilation and dashboard data runtime.

Sub-packages:
- cockpit.filters: filter context, date presets and cross-filters
- cockpit.metrics: metric/dataset definitions and the metric catalog
- cockpit.compiler: metric + filter context -> executable query spec
- cockpit.comparison: period shifting, LFL calendars and trend math
- cockpit.executor: analytical store execution (SQLAlchemy, ClickHouse HTTP)
- cockpit.assembler: widget data assembly, caching and refresh generations
- cockpit.drilldown: row-level drill-down state machine
- cockpit.api: FastAPI surface
"""
