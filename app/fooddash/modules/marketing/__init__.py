"""
Marketing module: promo codes, banners, popups and campaigns.
"""
