#!/usr/bin/env python3
"""
Basic usage examples for tus uploader.

This script demonstrates the most common operations:
- Checking the server
- Uploading a file as merged parallel chunks
- Uploading a file as one resumable stream
- Error handling
"""

import os
import sys
import tempfile
from pathlib import Path

from tus_uploader import (
    ConfigurationError,
    PartialUploadFailure,
    TusUploader,
    TusUploaderError,
    UploaderConfig,
)


def main():
    """Demonstrate basic tus uploads."""

    # Initialize uploader (requires TUS_BASE_URL environment variable)
    try:
        config = UploaderConfig.from_env(chunk_size=256 * 1024, merge_timeout=120)
    except ConfigurationError as e:
        print(f"Configuration failed: {e}")
        return 1

    def on_progress(uploaded, total, speed_mbps):
        print(f"   {uploaded}/{total} bytes ({speed_mbps:.2f} MB/s)")

    uploader = TusUploader(config, progress_callback=on_progress)

    print("\n" + "=" * 50)
    print("BASIC TUS UPLOADS")
    print("=" * 50)

    # 1. Check the server
    print("\n1. Checking server capabilities...")
    try:
        capabilities = uploader.client.update_capabilities()
        print(f"   Versions: {', '.join(capabilities.get('versions', []))}")
        print(f"   Extensions: {', '.join(capabilities.get('extensions', []))}")
    except TusUploaderError as e:
        print(f"   Error contacting server: {e}")
        return 1

    with tempfile.TemporaryDirectory() as tmp:
        test_file = Path(tmp) / "demo.bin"
        test_file.write_bytes(os.urandom(1024 * 1024 + 123))
        print(f"\n   Created test file: {test_file} ({test_file.stat().st_size} bytes)")

        # 2. Parallel chunks merged by the server
        print("\n2. Uploading as merged chunks...")
        try:
            result = uploader.upload_by_concat(test_file, copy_path="/demo/demo.bin")
            print(f"   Done: {result.location} ({result.chunks} chunks)")
        except PartialUploadFailure as e:
            for index, error in sorted(e.errors.items()):
                print(f"   Chunk {index} failed: {error}")
        except TusUploaderError as e:
            print(f"   Upload failed: {e}")

        # 3. One resumable stream
        print("\n3. Uploading sequentially...")
        try:
            result = uploader.upload_sequential(test_file, copy_path="/demo/demo-seq.bin")
            print(f"   Done: {result.location}")

            status = uploader.get_upload(result.location)
            print(f"   Server reports {status.remote_offset}/{status.remote_size} bytes")
        except TusUploaderError as e:
            print(f"   Upload failed: {e}")

    print("\nDone.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
