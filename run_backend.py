#!/usr/bin/env python3
"""
Simple script to run the FaceFind backend server
"""
import os
import sys


def main():
    """Run the FastAPI server"""
    host = os.getenv("FACEFIND_HOST", "0.0.0.0")
    port = int(os.getenv("FACEFIND_PORT", "8000"))

    try:
        import uvicorn

        print("Starting FaceFind Backend Server...")
        print(f"Server will be available at: http://localhost:{port}")
        print(f"API Documentation: http://localhost:{port}/docs")
        print(f"Health Check: http://localhost:{port}/health")
        print("\nPress Ctrl+C to stop the server\n")

        uvicorn.run("facefind.app:app", host=host, port=port, proxy_headers=True)

    except ImportError as e:
        print("Error: Missing required packages. Please install dependencies first:")
        print("   pip install -e .")
        print(f"\n   Error details: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
