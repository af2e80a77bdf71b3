"""
routing — Safety-aware route ranking and evacuation planning.

Sub-modules:
    models      — Route, RouteAssessment and recommendation tiers
    directions  — Google Directions client (httpx, optional Redis cache)
    scorer      — RouteSafetyScorer: sampling, penalties, detour filter
    evacuation  — EvacuationPlanner over a catalog of safe destinations
"""
