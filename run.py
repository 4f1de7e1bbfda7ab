"""
Punchcard loyalty ledger entry point.

Runs the app with its background scheduler (outbox delivery and expiration
sweeps). Set ENABLE_SCHEDULER=true outside production to start the jobs.
"""
import os
import sys
import traceback

config_name = os.getenv('FLASK_ENV', 'production')
print(f"[Punchcard] Config: {config_name}")
print(f"[Punchcard] DATABASE_URL: {'set' if os.getenv('DATABASE_URL') else 'NOT SET'}")

try:
    from punchcard import create_app
    app = create_app(config_name)
    scheduler = app.extensions['loyalty_scheduler']
    print(f"[Punchcard] Scheduler running: {scheduler.running} ({len(scheduler.jobs)} jobs)")
except Exception as e:
    print(f"[Punchcard] FATAL ERROR during app creation: {e}")
    traceback.print_exc()
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development',
        use_reloader=False
    )
