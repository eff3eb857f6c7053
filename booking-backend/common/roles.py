from django.db import models

class BookingRole(models.TextChoices):
    CLIENT      = "client",      "Client"
    ADMIN       = "admin",       "Admin"
    SUPER_ADMIN = "super_admin", "Super admin"


STAFF_ROLES = frozenset({BookingRole.ADMIN, BookingRole.SUPER_ADMIN})
