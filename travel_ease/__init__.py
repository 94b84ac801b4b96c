"""
FastAPI REST backend for TravelEase vehicle listings and car bookings.

This package provides:
- Public vehicle browsing (all and latest listings)
- Owner-scoped vehicle management
- Car bookings with duplicate protection
- Firebase ID token authentication and an origin allow-list
"""
