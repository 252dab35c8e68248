"""
Collecto Vault entry point.
"""
import os
import sys
import traceback

print("[Vault] ========================================")
print("[Vault] Starting Collecto Vault")
print("[Vault] ========================================")

config_name = os.getenv('FLASK_ENV', 'production')
print(f"[Vault] Config: {config_name}")
print(f"[Vault] PORT: {os.getenv('PORT', 'not set')}")
print(f"[Vault] DATABASE_URL: {'set' if os.getenv('DATABASE_URL') else 'NOT SET'}")
print(f"[Vault] COLLECTO_BASE_URL: {os.getenv('COLLECTO_BASE_URL', 'NOT SET')}")

try:
    from vault import create_app
    app = create_app(config_name)
    print("[Vault] App created successfully!")
except Exception as e:
    print(f"[Vault] FATAL ERROR during app creation: {e}")
    traceback.print_exc()
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
