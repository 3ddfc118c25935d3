#!/usr/bin/env python3
"""
Main entry point for the Halfway API
"""

from halfway.app import configure_logging, create_app
from halfway.config import settings

configure_logging(settings)
app = create_app(settings)

if __name__ == '__main__':
    if not settings.has_google_key:
        print("\n" + "="*50)
        print("SETUP REQUIRED:")
        print("="*50)
        print("1. Get a Google Maps API key from: https://console.cloud.google.com/")
        print("2. Enable the Geocoding, Directions and Places APIs")
        print("3. Set GOOGLE_MAPS_API_KEY in your environment or .env file")
        print("   (or set HALFWAY_PLACES_BACKEND=osm to search with OpenStreetMap)")
        print("="*50 + "\n")
    else:
        print("Starting Halfway API...")
    try:
        app.run(host=settings.HOST, port=settings.PORT, debug=False)
    finally:
        app.extensions['halfway'].shutdown()
