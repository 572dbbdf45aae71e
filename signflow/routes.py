"""Route classification for the session gate."""

PUBLIC_ROUTES = {
    "/login",
    "/register",
    "/register/success",
    "/auth",
    "/error",
    "/",
    "/forgot-password",
    "/reset-password",
    "/privacy",
    "/term",
    "/contact",
}

# signed-in users get bounced to the dashboard from these
PUBLIC_ONLY_ROUTES = {"/login", "/register", "/register/success", "/"}

PROTECTED_ROUTES = ("/upload", "/document", "/pricing")


def is_public_route(path: str) -> bool:
    return path in PUBLIC_ROUTES or path.startswith("/sign/") or path.startswith("/auth/")

def is_public_only_route(path: str) -> bool:
    return path in PUBLIC_ONLY_ROUTES

def is_protected_route(path: str) -> bool:
    return any(path.startswith(route) for route in PROTECTED_ROUTES) or path.startswith("/document/")
