"""
Restaurants module.

- Public browsing (listing, detail + menu, opening status)
- Owner self-service (profile, business hours, pause/resume, menu and options)
- Admin validation, activation and sponsorship
"""
