# -*- coding: utf-8 -*-
"""
User Registry HTTP API Server

启动 FastAPI 应用

API 使用方法:
    POST /addUser
    Body: {"name": "Ada", "age": 30, "email": "ada@example.org"}
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()


def main():
    port = int(os.getenv('PORT', 3000))
    host = os.getenv('HOST', '0.0.0.0')
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )

    print("=" * 60)
    print("  User Registry API Server")
    print("=" * 60)
    print(f"\n  Server: http://{host}:{port}")
    print(f"  Log level: {log_level}")
    print(f"  RPC URL: {'✓ Set' if os.getenv('INFURA_URL') or os.getenv('RPC_URL') else '✗ Not Set'}")
    print(f"  Contract: {os.getenv('CONTRACT_ADDRESS') or '✗ Not Set'}")
    print(f"  Private Key: {'✓ Set' if os.getenv('PRIVATE_KEY') else '✗ Not Set'}")
    print("\n" + "=" * 60)
    print("\n  API Endpoints:")
    print("    POST /addUser                - Register a user (sends a transaction)")
    print("    GET  /getAllUserNames        - List registered user names")
    print("    GET  /getUserByName/{name}   - Look up one user")
    print("    GET  /listenUserAdded        - Start logging UserAdded events")
    print("    POST /stopListening          - Stop the event listener")
    print("\n" + "=" * 60 + "\n")

    uvicorn.run("user_registry.api.main:app", host=host, port=port, log_level=log_level.lower())


if __name__ == '__main__':
    main()
