"""
QR Event Check-in System - Main Application

Entry point for the check-in service. Builds the Flask application from the
environment-selected configuration (FLASK_ENV) and serves it.

Features:
- Event administration
- Registration with emailed QR codes
- QR and registration-ID check-in
- Attendance export to CSV/Excel
"""

import os

from qr_checkin import create_app

app = create_app()

if __name__ == '__main__':
    app.run(
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', 5000)),
        debug=app.config['DEBUG']
    )
