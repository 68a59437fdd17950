from . import analytics, auth, complaints, notifications, users

ROUTERS = [auth.router, users.router, complaints.router, analytics.router, notifications.router]
