"""Print a fresh random OPERATOR_API_TOKEN for the mark-executed callback."""
import secrets

if __name__ == "__main__":
    print(secrets.token_urlsafe(32))
