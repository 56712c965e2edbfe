"""
Configuration constants for visualdupe.

This module contains all configurable settings including:
- Fixed feature vector layout shared by kernels and consumers
- Similarity weights and thresholds
- Batch scheduling heuristics
- Cache capacity limits
"""

import os

# Supported image extensions for the file-backed asset source
IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tiff', '.tif',
    '.heic', '.heif', '.avif',
    '.pbm', '.pgm', '.ppm', '.pnm',
    '.tga', '.ico',
}

# Feature vector layout
# Producer (kernels) and consumer (similarity) must agree on these exactly
HISTOGRAM_BINS = 256
HISTOGRAM_SIZE = HISTOGRAM_BINS * 3            # RGB (768)
DESCRIPTOR_SLOTS = 500
DESCRIPTOR_SIZE = 32
DESCRIPTOR_LENGTH = DESCRIPTOR_SLOTS * DESCRIPTOR_SIZE  # 16000
FINGERPRINT_BITS = 64
FINGERPRINT_GRID = 8

# Flattened per-image row in the similarity kernel's feature buffer:
# histogram ++ descriptors ++ fingerprint (low and high 32-bit halves)
FEATURE_ROW_SIZE = HISTOGRAM_SIZE + DESCRIPTOR_LENGTH + 2

# Local-descriptor kernel parameters
DESCRIPTOR_SAMPLE_RADIUS = 3
DESCRIPTOR_SAMPLE_COUNT = 8
DESCRIPTOR_BIT_RADIUS = 5
DESCRIPTOR_BIT_COUNT = DESCRIPTOR_SIZE - 3     # 29 binary comparisons
DESCRIPTOR_ACTIVATION_THRESHOLD = 0.5

# Rec. 601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

# Fused similarity weights (histogram, descriptor, fingerprint)
HISTOGRAM_WEIGHT = 0.3
DESCRIPTOR_WEIGHT = 0.5
FINGERPRINT_WEIGHT = 0.2

# Two descriptors "match" when their Pearson correlation exceeds this
DESCRIPTOR_MATCH_THRESHOLD = 0.8

# Default threshold for cluster extraction on a similarity matrix
COMBINED_THRESHOLD = 0.75
# Threshold the scan orchestrator uses when merging images into groups
# Tuned independently of COMBINED_THRESHOLD
GROUPING_THRESHOLD = 0.8
# A fused score at or above this (with enough agreement) is a strong match
STRONG_MATCH_THRESHOLD = 0.85

# Batch scheduling
DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 500
INCREMENTAL_THRESHOLD = 500
INCREMENTAL_BATCH_COUNT = 20
LARGE_COLLECTION_BATCH_SIZE = 30
MEMORY_PER_IMAGE_MB = 10        # rough working-set estimate per image
HIGH_END_MEMORY_MB = 3000       # above this we guess a high-end GPU tier
HIGH_END_GPU_BATCH_SIZE = 100
STANDARD_GPU_BATCH_SIZE = 50

# Memory-aware re-splitting (policy defaults, not measured)
BYTES_PER_PIXEL = 4
PER_IMAGE_OVERHEAD_BYTES = 1024 * 1024
DEFAULT_MEMORY_BUDGET = 100 * 1024 * 1024
HIGH_RESOLUTION_PIXELS = 4_000_000

# Compute device
DEVICE_CONCURRENCY = 4          # in-flight extractions on the device
MAX_TEXTURE_DIMENSION = 1024    # larger decodes are downscaled before upload

# Number of CPU worker threads used for extraction and the CPU backend
DEFAULT_WORKERS = 4

# Feature cache limits
CACHE_MAX_ENTRIES = 100
CACHE_MAX_BYTES = 50 * 1024 * 1024

# Pairwise similarity memo
PAIRWISE_CACHE_MAX_ENTRIES = 1000

# Increase PIL's decompression bomb limit for large photos
MAX_IMAGE_PIXELS = 500_000_000

# User configuration file location
CONFIG_DIR = os.path.join(os.path.expanduser('~'), '.visualdupe')
