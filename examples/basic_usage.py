#!/usr/bin/env python3
"""
Basic usage example for the OpenID provider core

Walks one authorization code flow in-process, without an HTTP server:
authorize, login completion, code exchange and refresh rotation.
"""

import sys
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

# Add the repository root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from oidc_op.auth import ClientRegistry, OpenIDProvider, PKCEVerifier, web_client
from oidc_op.config import get_development_config
from oidc_op.errors import OAuthError

REDIRECT_URI = "http://localhost:9999/auth/callback"


def query(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def main():
    """Example usage of the provider core"""
    print("OpenID provider - Basic Usage Example")
    print("=" * 50)

    config = get_development_config()
    registry = ClientRegistry([web_client("web", "secret", redirect_uris=[REDIRECT_URI])])
    provider = OpenIDProvider(config, registry)
    pkce = PKCEVerifier.create_pkce_challenge()

    try:
        print("1. Sending authorization request...")
        response = provider.authorize({
            "response_type": "code",
            "client_id": "web",
            "redirect_uri": REDIRECT_URI,
            "scope": "openid offline_access",
            "state": "example",
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": pkce.code_challenge_method,
        })
        print(f"   ✓ Redirected to login: {response.location}")

        print("\n2. Completing login as alice...")
        callback = provider.complete_authorization(response.request_id, "alice")
        code = query(callback)["code"]
        print(f"   ✓ Client callback: {callback}")

        print("\n3. Exchanging the code...")
        tokens = provider.token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT_URI,
            "client_id": "web",
            "client_secret": "secret",
            "code_verifier": pkce.code_verifier,
        })
        print(f"   ✓ Issued: {', '.join(sorted(tokens))}")

        print("\n4. Rotating the refresh token...")
        rotated = provider.token({
            "grant_type": "refresh_token",
            "refresh_token": tokens["refresh_token"],
            "client_id": "web",
            "client_secret": "secret",
        })
        print(f"   ✓ New refresh token differs: {rotated['refresh_token'] != tokens['refresh_token']}")

        print("\n5. Replaying the old refresh token...")
        try:
            provider.token({
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": "web",
                "client_secret": "secret",
            })
        except OAuthError as e:
            print(f"   ✓ Rejected with {e.error}; token family revoked")

        print("\nBasic usage example completed successfully!")

    except OAuthError as e:
        print(f"❌ Error: {e.error}: {e.description}")
        sys.exit(1)
    finally:
        provider.close()


if __name__ == "__main__":
    main()
