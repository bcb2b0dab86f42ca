import itertools
import json

from seizure_monitor.common.config import settings
from seizure_monitor.common.simulator import sample_stream


def main() -> None:
    stream = sample_stream(
        user_count=settings.sim_user_count,
        seizure_ratio=settings.sim_seizure_ratio,
    )
    for sample in itertools.islice(stream, 100):
        print(json.dumps(sample.model_dump(mode="json")))


if __name__ == "__main__":
    main()
