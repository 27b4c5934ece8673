"""
Drivers module: driver profiles, availability, live location, earnings and ratings.
"""
