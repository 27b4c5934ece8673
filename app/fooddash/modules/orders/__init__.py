"""
Orders module.

- Cart and checkout (pricing, promo codes)
- Order lifecycle shared by customers, restaurants, drivers and admins
- Tracking (driver position, routing), order chat, reviews, voice notes
"""
