"""
Pre-download and load the DeepFace weights used by the scanner.

DeepFace fetches model weights lazily on first use; running this once on a
new station keeps the first scan session from stalling on the download.

Run locally: `python tools/warmup_models.py --model Facenet --detector opencv`
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import config  # noqa: E402
from core.inference.engine import DeepFaceProvider, EmbeddingEngine, ProviderInitializationError  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Download and load DeepFace weights for the scanner')
    parser.add_argument('--model', default=config.FACE_MODEL_NAME, help='DeepFace model name')
    parser.add_argument('--detector', default=config.FACE_DETECTOR_BACKEND, help='DeepFace detector backend')
    parser.add_argument('--skip-detector', action='store_true',
                        help='Only build the embedding model, do not run the detector once')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    provider = DeepFaceProvider(model_name=args.model, detector_backend=args.detector)
    engine = EmbeddingEngine(provider)

    print(f'Loading model {args.model}...')
    started = time.monotonic()
    try:
        engine.initialize()
    except ProviderInitializationError as exc:
        print(f'Model failed to load: {exc}')
        return 1
    print(f'Model ready in {time.monotonic() - started:.1f}s')

    if not args.skip_detector:
        # One pass over a blank frame pulls the detector weights as well
        print(f'Running detector {args.detector} once...')
        blank = np.zeros((160, 160, 3), dtype=np.uint8)
        faces = engine.detect_faces(blank)
        print(f'Detector ready ({len(faces)} face(s) on a blank frame)')

    return 0


if __name__ == '__main__':
    sys.exit(main())
