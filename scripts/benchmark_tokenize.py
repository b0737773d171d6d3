import argparse
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from statistics import mean

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from unigram_core.model_io import load_any
from unigram_core.tokenizer import SentencePieceModel

DEFAULT_TEXT = (
    "compose email to john saying i will be running late to office today because i am not "
    "feeling well, my head is aching and in the body add shall we meet next week and when we "
    "go to the office lets reach by around 10 am and go for a movie in the evening, may be "
    "Spiderman which seems to be a very good movie which got 5 star review from rottentomatoes and imdb"
)


def timed_tokenize(model: SentencePieceModel, text: str, repeats: int) -> float:
    t0 = time.perf_counter()
    for _ in range(repeats):
        model.tokenize_to_offsets(text)
    return (time.perf_counter() - t0) / max(repeats, 1)


def run_benchmark(model: SentencePieceModel, text: str, workers: int, repeats: int):
    # Warm-up; also freezes the model before the threads share it.
    reference = model.tokenize_to_offsets(text)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(timed_tokenize, model, text, repeats) for _ in range(workers)]
        latencies = [f.result() for f in futures]

    for i, latency in enumerate(latencies):
        print(f"{i}: tokenize {len(text)} chars used {latency * 1e3:.3f} ms")
    print(f"Workers: {workers}, repeats per worker: {repeats}")
    print(f"Average latency: {mean(latencies) * 1e3:.3f} ms")

    print("\n" + "=" * 70)
    print("TOKENIZATION RESULT")
    print("=" * 70)
    print(f"{len(reference)} tokens: {[(t.id, t.text) for t in reference[:30]]}{'...' if len(reference) > 30 else ''}")


def main():
    parser = argparse.ArgumentParser(description="Benchmark concurrent tokenization on one shared model.")
    parser.add_argument("model", type=Path, help="SentencePiece .model file or JSON vocabulary.")
    parser.add_argument("--workers", type=int, default=4, help="Number of concurrent threads.")
    parser.add_argument("--repeats", type=int, default=10, help="Tokenize calls per thread.")
    parser.add_argument("--text", default=DEFAULT_TEXT, help="Input text to tokenize.")
    parser.add_argument("--lowercase", action="store_true", help="Force lowercasing (JSON models keep their stored setting otherwise).")
    parser.add_argument("--device", default=None, help="Torch device for the DP tables (default: CPU).")
    args = parser.parse_args()

    if args.workers < 1:
        raise ValueError("--workers must be at least 1.")
    if not args.model.exists():
        raise FileNotFoundError(f"Model file not found: {args.model}")

    overrides = {"lowercase": True} if args.lowercase else {}
    model = load_any(args.model, device=args.device, verbose=True, **overrides)
    run_benchmark(model, args.text, args.workers, args.repeats)


if __name__ == "__main__":
    main()
