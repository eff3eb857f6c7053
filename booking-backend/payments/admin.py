from django.contrib import admin

from .models import PaymentEvent


@admin.register(PaymentEvent)
class PaymentEventAdmin(admin.ModelAdmin):
    list_display = ("order", "source", "event_type", "gateway_status", "previous_status", "local_status", "applied", "created_at")
    list_filter = ("source", "applied", "local_status")
    search_fields = ("order__external_identifier", "order__click2pay_tid", "dedupe_key")
    readonly_fields = [f.name for f in PaymentEvent._meta.fields]
