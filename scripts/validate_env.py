import os
import sys
import argparse
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / '.env')

errors = []
warnings = []

parser = argparse.ArgumentParser()
parser.add_argument('--strict', '-s', action='store_true', help='Convert warnings to failures')
parser.add_argument('--skip-network', action='store_true', help='Skip Redis and OpenAI connectivity checks')
args = parser.parse_args()
STRICT = args.strict

required = {
    'server': ['ENVIRONMENT', 'HOST', 'PORT'],
    'openai': ['OPENAI_API_KEY', 'OPENAI_MODEL'],
}

def check_presence(cat, keys):
    for k in keys:
        if not os.getenv(k):
            errors.append(f"{cat}: Missing {k}")

for cat, keys in required.items():
    check_presence(cat, keys)

# Format checks
try:
    port = int(os.getenv('PORT', '0'))
    if port < 1 or port > 65535:
        errors.append('PORT must be integer between 1 and 65535')
except ValueError:
    errors.append('PORT must be an integer')

openai_key = os.getenv('OPENAI_API_KEY', '')
if openai_key and not openai_key.startswith('sk-'):
    warnings.append('OPENAI_API_KEY does not start with sk-; verify provider')

# Numeric ranges
int_ranges = {
    'PLAN_CHUNK_MAX_CHARS': (1000, 500000),
    'PLAN_CHUNK_OVERLAP_CHARS': (0, 50000),
    'EMBED_BATCH_SIZE': (1, 2048),
    'OPENAI_RETRY_ATTEMPTS': (1, 10),
    'MASTERY_HISTORY_WINDOW': (1, 1000),
}
for key, (low, high) in int_ranges.items():
    raw = os.getenv(key)
    if raw is None:
        continue
    try:
        value = int(raw)
        if value < low or value > high:
            errors.append(f'{key} must be between {low} and {high}')
    except ValueError:
        errors.append(f'{key} must be an integer')

try:
    max_chars = int(os.getenv('PLAN_CHUNK_MAX_CHARS', '48000'))
    overlap = int(os.getenv('PLAN_CHUNK_OVERLAP_CHARS', '1000'))
    if overlap >= max_chars:
        errors.append('PLAN_CHUNK_OVERLAP_CHARS must be smaller than PLAN_CHUNK_MAX_CHARS')
except ValueError:
    pass

float_ranges = {
    'MASTERY_MIN_INTERVAL_DAYS': (0.0, 365.0),
    'MASTERY_MAX_INTERVAL_DAYS': (0.0, 3650.0),
    'MASTERY_WEAK_THRESHOLD': (0.0, 100.0),
    'MASTERY_DEFAULT_SCORE': (0.0, 100.0),
    'OPENAI_TIMEOUT': (1.0, 600.0),
}
for key, (low, high) in float_ranges.items():
    raw = os.getenv(key)
    if raw is None:
        continue
    try:
        value = float(raw)
        if value < low or value > high:
            errors.append(f'{key} must be between {low} and {high}')
    except ValueError:
        errors.append(f'{key} must be a float')

for key in os.environ:
    if key.startswith('OPENAI_PRICE_'):
        try:
            if float(os.environ[key]) < 0:
                errors.append(f'{key} must not be negative')
        except ValueError:
            errors.append(f'{key} must be a float')

redis_enabled = os.getenv('REDIS_ENABLED', 'true').lower() in ('1', 'true', 'yes')
if not redis_enabled:
    warnings.append('REDIS_ENABLED is false; jobs and study data are kept in process memory only')

# Redis check
if redis_enabled and not args.skip_network:
    try:
        import redis
        if os.getenv('REDIS_URL'):
            r = redis.from_url(os.getenv('REDIS_URL'))
        else:
            r = redis.Redis(host=os.getenv('REDIS_HOST', 'redis'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None, socket_timeout=3)
        if r.ping():
            print('Redis: OK')
    except Exception as e:
        errors.append(f'Redis check failed: {e}')

# OpenAI check - use 1.x client API (OpenAI)
if openai_key and not args.skip_network:
    try:
        from openai import OpenAI
        client = OpenAI(api_key=openai_key)
        client.models.list()
        print('OpenAI: API reachable')
    except Exception as e:
        warnings.append(f'OpenAI check failed: {e}')

# Log directory check
log_path = os.getenv('LOG_FILE_PATH', 'logs')
if log_path:
    log_dir = Path(log_path)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(log_dir, os.W_OK):
            errors.append(f'Log path not writable: {log_dir}')
        else:
            print(f'Log directory: {log_dir}')
    except Exception as e:
        errors.append(f'Failed to verify/create log dir: {e}')

if errors:
    print('\nENV validation failed:')
    for e in errors:
        print(' -', e)
    sys.exit(1)

if warnings:
    print('\nWarnings:')
    for w in warnings:
        print(' -', w)
    if STRICT:
        print('\nStrict mode enabled: treating warnings as errors')
        sys.exit(1)

print('\nAll critical validations passed')
sys.exit(0)
