"""
Presentation of each alert per recipient role: which sound and vibration
pattern the client plays, whether a push notification is shown, the toast
variant and whether an urgent modal interrupts the screen.
"""
from __future__ import annotations

from typing import Any

ALERT_TYPES = (
    "order_new",
    "order_accepted",
    "order_preparing",
    "order_ready",
    "order_picked_up",
    "order_delivering",
    "order_delivered",
    "order_cancelled",
    "message_received",
    "driver_assigned",
    "delivery_available",
    "admin_urgent",
    "broadcast",
    "success",
    "error",
)

THROTTLE_SECONDS = 2
DEFAULT_TOAST_DURATION_MS = 5000


def _cfg(sound: str | None, vibration: str | None, push: bool, toast: str | None, *, duration: int | None = None, urgent: bool = False) -> dict[str, Any]:
    return {
        "sound": sound,
        "vibration": vibration,
        "push": push,
        "toast": toast,
        "toast_duration": duration or DEFAULT_TOAST_DURATION_MS,
        "urgent_modal": urgent,
    }


_STATUS_UPDATE = _cfg("order_status_update", "notification", True, "info")
_MESSAGE = _cfg("message_received", "notification", True, "info")
_CANCELLED = _cfg("error", "error", True, "error")
_BROADCAST = _cfg("admin_alert", "notification", True, "info", duration=8000)

ALERT_CONFIGS: dict[str, dict[str, dict[str, Any]]] = {
    "customer": {
        "order_accepted": _cfg("order_new_customer", "notification", True, "success"),
        "order_preparing": _STATUS_UPDATE,
        "order_ready": _STATUS_UPDATE,
        "order_picked_up": _STATUS_UPDATE,
        "order_delivering": _STATUS_UPDATE,
        "order_delivered": _cfg("success", "success", True, "success"),
        "order_cancelled": _CANCELLED,
        "message_received": _MESSAGE,
        "driver_assigned": _STATUS_UPDATE,
        "broadcast": _BROADCAST,
    },
    "restaurant_owner": {
        "order_new": _cfg("order_new_restaurant", "order_new_restaurant", True, "warning", duration=10000, urgent=True),
        "order_cancelled": _CANCELLED,
        "message_received": _MESSAGE,
        "broadcast": _BROADCAST,
    },
    "delivery_driver": {
        "delivery_available": _cfg("order_new_driver", "order_new_driver", True, "warning", duration=8000),
        "order_ready": _cfg("order_new_driver", "notification", True, "info"),
        "message_received": _MESSAGE,
        "broadcast": _BROADCAST,
    },
    "admin": {
        "admin_urgent": _cfg("admin_alert", "urgent", True, "error", duration=15000, urgent=True),
        "order_cancelled": _cfg("error", "error", True, "warning"),
        "error": _cfg("error", "error", True, "error"),
        "broadcast": _BROADCAST,
    },
}

DEFAULT_CONFIG = _cfg("success", "notification", False, "info")
# Repeats inside the throttle window are stored but play nothing on the device.
MUTED_CONFIG = _cfg(None, None, False, None)


def resolve_config(role: str, alert_type: str) -> dict[str, Any]:
    return dict(ALERT_CONFIGS.get(role, {}).get(alert_type) or DEFAULT_CONFIG)


# order status -> (alert type, title, message) as seen by the customer
STATUS_ALERTS: dict[str, tuple[str, str, str]] = {
    "accepted": ("order_accepted", "Commande acceptée", "Votre commande a été acceptée"),
    "confirmed": ("order_accepted", "Commande confirmée", "Votre commande a été confirmée"),
    "preparing": ("order_preparing", "En préparation", "Votre commande est en cours de préparation"),
    "pickup_pending": ("order_ready", "Commande prête", "Votre commande est prête"),
    "ready": ("order_ready", "Commande prête", "Votre commande est prête"),
    "pickup_accepted": ("driver_assigned", "Livreur assigné", "Un livreur va récupérer votre commande"),
    "picked_up": ("order_picked_up", "Commande récupérée", "Le livreur a récupéré votre commande"),
    "delivering": ("order_delivering", "En livraison", "Votre commande est en route"),
    "delivered": ("order_delivered", "Livré !", "Votre commande a été livrée. Bon appétit !"),
    "cancelled": ("order_cancelled", "Annulée", "Votre commande a été annulée"),
}


def status_alert(status: str) -> tuple[str, str, str]:
    return STATUS_ALERTS.get(status) or ("order_accepted", "Mise à jour", f"Statut: {status}")
