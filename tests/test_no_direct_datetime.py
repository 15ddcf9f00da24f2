import re
import unittest
from pathlib import Path


PACKAGE_DIR = Path(__file__).resolve().parents[1] / 'schoolhub'
CLOCK_MODULE = PACKAGE_DIR / 'core' / 'time_provider.py'
DIRECT_CLOCK_CALL = re.compile(r'\b(?:datetime\.(?:now|utcnow|today)|date\.today)\(')


class NoDirectClockUsageTests(unittest.TestCase):
    def test_business_code_reads_time_through_time_provider(self):
        offenders = []
        for path in sorted(PACKAGE_DIR.rglob('*.py')):
            if path == CLOCK_MODULE:
                continue
            for line_no, line in enumerate(path.read_text(encoding='utf-8').splitlines(), start=1):
                if DIRECT_CLOCK_CALL.search(line):
                    offenders.append(f'{path.relative_to(PACKAGE_DIR.parent)}:{line_no}: {line.strip()}')
        self.assertEqual(offenders, [], 'Direct clock calls found:\n' + '\n'.join(offenders))


if __name__ == '__main__':
    unittest.main()
