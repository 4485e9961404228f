"""
Routes package for the PropertyPerfect backend.
Contains Flask Blueprints for the API namespaces.
"""

__all__ = [
    "register_blueprints",
]


def _print_route_map(app):
    """Print all registered /api/* routes at startup."""
    api_routes = []
    for rule in app.url_map.iter_rules():
        if rule.rule.startswith("/api"):
            methods = ",".join(sorted(m for m in rule.methods if m not in ("HEAD", "OPTIONS")))
            api_routes.append(f"  {methods:15s} {rule.rule}")

    api_routes.sort(key=lambda x: x.split()[-1])

    print("[ROUTES] Registered API endpoints:")
    for route in api_routes:
        print(route)
    print(f"[ROUTES] Total: {len(api_routes)} endpoints")


def register_blueprints(app, print_routes: bool = False):
    """Register all blueprints with the Flask app."""
    from propertyperfect.routes.health import bp as health_bp
    from propertyperfect.routes.enhance import bp as enhance_bp
    from propertyperfect.routes.billing import bp as billing_bp
    from propertyperfect.routes.user import bp as user_bp
    from propertyperfect.routes.admin import bp as admin_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(enhance_bp, url_prefix="/api")
    app.register_blueprint(billing_bp, url_prefix="/api")
    app.register_blueprint(user_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    if print_routes:
        _print_route_map(app)
