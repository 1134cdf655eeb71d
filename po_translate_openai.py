#!/usr/bin/env python3
"""
po_translate_openai.py

Fills in missing msgstr entries of a gettext .po file using the OpenAI
chat completions API. The file is rewritten line by line: every line that
is not an untranslated msgstr is copied to the output untouched.

Usage:
    python po_translate_openai.py -i messages.po -o messages_zh.po -t zh-CN
    python po_translate_openai.py -i messages.po --dry-run
"""

import os
import re
import sys
import json
import time
import argparse

import chardet
import requests
from langdetect import DetectorFactory, detect
from langdetect.lang_detect_exception import LangDetectException
from tqdm import tqdm


CONFIG_FILE = "config.json"
KEY_FILE = "openai_key.txt"
API_KEY_ENV = "OPENAI_API_KEY"

DEFAULT_CONFIG = {
    "target_language": "zh-CN",
    "model": "gpt-3.5-turbo",
    "api_base_url": "https://api.openai.com/v1",
    "timeout": 60,
    "temperature": 0.2,
    "max_length_ratio": 4,   # reject replies longer than ratio x source
    "known_bad_outputs": [
        "",
        " ",
        "翻译失败",
        "您接受的培训数据截至2023年10月。",
    ],
    "check_target_language": False,
}

STAT_KEYS = (
    "translated",
    "too_long",
    "already_translated",
    "known_bad",
    "wrong_language",
    "unencodable",
    "failed",
    "empty",
)

MSGID_MULTILINE_PREFIX = 'msgid ""'
MSGID_PREFIX = 'msgid "'
MSGSTR_PREFIX = 'msgstr "'
MSGID_RE = re.compile(r'^msgid "(.*)"\s*$')
MSGSTR_RE = re.compile(r'^msgstr "(.*)"\s*$')

PO_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
}
PO_UNESCAPES = {
    "\\": "\\",
    '"': '"',
    "n": "\n",
    "t": "\t",
    "r": "\r",
}
PO_ESCAPE_RE = re.compile(r'[\\"\n\t\r]')
PO_UNESCAPE_RE = re.compile(r"\\(.)")

# langdetect is non-deterministic unless seeded
DetectorFactory.seed = 0


class TranslationError(Exception):
    """Raised by a translator when a single string could not be translated."""


class ConfigError(Exception):
    """Raised when the run cannot start because of missing settings."""


class OpenAIClient:
    """OpenAI chat completions client translating one catalog string per request"""

    def __init__(self, api_key, model="gpt-3.5-turbo", base_url="https://api.openai.com/v1",
                 timeout=60, temperature=0.2):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json"
        }

    def translate(self, text, target_language):
        """
        Translate a single string. Returns the stripped reply text or raises
        TranslationError with a readable cause.
        """
        system_prompt = (
            f"Translate the following text into {target_language}. RULES:\n"
            "1. PRESERVE ALL variables: %(var)s, %d, {0}, {{key}}, etc.\n"
            "2. PRESERVE leading/trailing spaces, punctuation and line breaks\n"
            "3. Reply with the translation only, NO extra text or explanations"
        )

        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": system_prompt
                },
                {
                    "role": "user",
                    "content": text
                }
            ],
            "temperature": self.temperature,
            "stream": False
        }

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                headers=self.headers,
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TranslationError(f"OpenAI API request failed: {e}") from e

        if response.status_code != 200:
            raise TranslationError(f"OpenAI API error: {response.status_code} - {response.text}")

        try:
            result = response.json()
            choices = result.get("choices") or []
        except (ValueError, AttributeError) as e:
            raise TranslationError(f"OpenAI API returned invalid JSON: {e}") from e

        if not choices:
            raise TranslationError("OpenAI API response contains no translation")

        content = (choices[0].get("message") or {}).get("content")
        if content is None:
            raise TranslationError("OpenAI API response contains no message content")
        return content.strip()


def load_config(path=CONFIG_FILE):
    """Return DEFAULT_CONFIG merged with the JSON file at path, if any."""
    config = DEFAULT_CONFIG.copy()
    if os.path.exists(path):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config.update(json.load(f))
        except ValueError:
            print(f"❌ Invalid JSON in '{path}'. Using defaults.")
    return config


def save_config(config, path=CONFIG_FILE):
    """Save configuration to JSON file"""
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4, ensure_ascii=False)
    except OSError as e:
        print(f"❌ Could not save settings: {e}")


def resolve_api_key(cli_key=None, key_file=KEY_FILE):
    """
    Pick the API key from the command line, the OPENAI_API_KEY environment
    variable or the key file, in that order.
    """
    if cli_key:
        return cli_key
    key = os.getenv(API_KEY_ENV)
    if key:
        return key
    if os.path.exists(key_file):
        with open(key_file, encoding='utf-8') as f:
            key = f.read().strip()
        if key:
            return key
    raise ConfigError(
        f"Missing OpenAI API key. Pass --openai-api-key, set {API_KEY_ENV} "
        f"or put the key into '{key_file}'."
    )


def escape_po(text):
    """Escape plain text for use inside a quoted PO string"""
    if not text:
        return ""
    return PO_ESCAPE_RE.sub(lambda m: PO_ESCAPES[m.group(0)], text)


def unescape_po(text):
    """Unescape PO format text back to original"""
    if not text:
        return ""
    return PO_UNESCAPE_RE.sub(lambda m: PO_UNESCAPES.get(m.group(1), m.group(0)), text)


def strip_eol(line):
    """Line text without its trailing LF or CRLF."""
    return line.rstrip("\r\n")


def line_ending(line):
    """The terminator of line, "" for a last line without one."""
    return line[len(strip_eol(line)):]


def is_continuation(line):
    """A quoted continuation line such as "Hello " following msgid "" or msgstr ""."""
    if line is None:
        return False
    text = strip_eol(line)
    return len(text) >= 2 and text.startswith('"') and text.endswith('"')


class LineCursor:
    """
    Forward-only iterator over raw lines (line endings included) with one
    line of lookahead. The scanner and the resolver share one cursor; a line
    handed out by __next__ is never seen again.
    """

    _EMPTY = object()

    def __init__(self, lines, progress=None):
        self._lines = iter(lines)
        self._peeked = self._EMPTY
        self.progress = progress
        self.consumed = 0

    def __iter__(self):
        return self

    def __next__(self):
        if self._peeked is not self._EMPTY:
            line = self._peeked
            self._peeked = self._EMPTY
            if line is None:
                raise StopIteration
        else:
            line = next(self._lines)
        self.consumed += 1
        if self.progress is not None:
            self.progress.update(1)
        return line

    def peek(self):
        """Return the next line without consuming it, or None at end of input."""
        if self._peeked is self._EMPTY:
            self._peeked = next(self._lines, None)
        return self._peeked

    def next_line(self):
        """Consume and return the next line, or None at end of input."""
        return next(self, None)


class CatalogEntry:
    """One msgid/msgstr pair as it appeared in the file."""

    def __init__(self, source_text, raw_source_lines, raw_translation_lines,
                 existing_translation=None, is_multiline=False):
        self.source_text = source_text
        self.raw_source_lines = raw_source_lines
        self.raw_translation_lines = raw_translation_lines
        self.existing_translation = existing_translation
        self.is_multiline = is_multiline

    @property
    def needs_translation(self):
        return self.existing_translation is None

    def __repr__(self):
        return (f"CatalogEntry(source_text={self.source_text!r}, "
                f"existing_translation={self.existing_translation!r}, "
                f"is_multiline={self.is_multiline!r})")


def read_translation(line, cursor):
    """
    Parse a msgstr declaration starting at line. Continuation lines that
    follow it belong to the translation and are consumed from the cursor.

    Returns (raw_lines, value) or None when line is not a msgstr declaration.
    """
    text = strip_eol(line)
    if not text.startswith(MSGSTR_PREFIX):
        return None

    match = MSGSTR_RE.match(text)
    value = match.group(1) if match else text[len(MSGSTR_PREFIX):]
    raw_lines = [line]
    while is_continuation(cursor.peek()):
        continuation = next(cursor)
        raw_lines.append(continuation)
        value += strip_eol(continuation)[1:-1]
    return raw_lines, value


def _make_entry(source_text, raw_source_lines, translation, is_multiline):
    raw_translation_lines, value = translation
    return CatalogEntry(
        source_text=source_text,
        raw_source_lines=raw_source_lines,
        raw_translation_lines=raw_translation_lines,
        existing_translation=value or None,
        is_multiline=is_multiline,
    )


def _scan_single_line(line, cursor):
    match = MSGID_RE.match(strip_eol(line))
    if not match:
        yield line
        return

    next_line = cursor.next_line()
    if next_line is None:
        yield line
        return

    translation = read_translation(next_line, cursor)
    if translation is None:
        # msgid without a msgstr after it, leave both lines alone
        yield line
        yield next_line
        return

    yield _make_entry(match.group(1), [line], translation, is_multiline=False)


def _scan_multiline(first_line, cursor):
    raw_lines = [first_line]
    parts = []

    for line in cursor:
        if is_continuation(line):
            parts.append(strip_eol(line)[1:-1])
            raw_lines.append(line)
            continue

        translation = read_translation(line, cursor)
        if translation is None:
            raw_lines.append(line)
            break

        yield _make_entry("".join(parts), raw_lines, translation, is_multiline=True)
        return

    # unterminated block or end of file
    for raw in raw_lines:
        yield raw


def scan_catalog(cursor):
    """
    Walk the cursor and yield either raw lines to copy through or
    CatalogEntry objects for every msgid followed by a msgstr.
    """
    for line in cursor:
        text = strip_eol(line)
        if text.startswith(MSGID_MULTILINE_PREFIX):
            yield from _scan_multiline(line, cursor)
        elif text.startswith(MSGID_PREFIX):
            yield from _scan_single_line(line, cursor)
        else:
            yield line


def reject_known_bad(source, candidate, config):
    """Reply is one of the known junk answers (empty, refusal boilerplate...)."""
    if candidate.strip() in set(config.get("known_bad_outputs", ())):
        return "known_bad"
    return None


def reject_too_long(source, candidate, config):
    """Reply is far longer than the source, usually a rambling model answer."""
    ratio = config.get("max_length_ratio", 4)
    if len(candidate) > len(source) * ratio:
        return "too_long"
    return None


def detect_language(text):
    """Return the langdetect code of text, or None when it cannot be told."""
    clean_text = re.sub(r'%\([^)]+\)[sd]|%\w|{\w*}|\\[ntr]', ' ', text)
    clean_text = re.sub(r'[^\w\s]', ' ', clean_text)
    clean_text = re.sub(r'\s+', ' ', clean_text).strip()
    if len(clean_text) < 3:
        return None
    try:
        return detect(clean_text)
    except LangDetectException:
        return None


def reject_unencodable(source, candidate, config):
    """Reply contains characters the output file's encoding cannot store."""
    encoding = config.get("output_encoding")
    if not encoding:
        return None
    try:
        candidate.encode(encoding)
    except UnicodeEncodeError:
        return "unencodable"
    return None


def reject_wrong_language(source, candidate, config):
    """Reply is detected to be in another language than the target (opt-in)."""
    if not config.get("check_target_language"):
        return None
    target = config.get("target_language") or ""
    detected = detect_language(candidate)
    if detected is None or not target:
        return None
    if detected.split("-")[0].lower() != target.split("-")[0].lower():
        return "wrong_language"
    return None


ACCEPTANCE_CHECKS = [
    reject_known_bad,
    reject_too_long,
    reject_unencodable,
    reject_wrong_language,
]


def check_translation(source, candidate, config, checks=ACCEPTANCE_CHECKS):
    """Run the checks in order; return the first rejection reason or None."""
    for check in checks:
        reason = check(source, candidate, config)
        if reason:
            return reason
    return None


def translate_entry(entry, translate, target_language, config, stats):
    """
    Ask the translator for the entry's text and validate the reply.
    Returns the accepted translation (PO-escaped) or None.
    """
    source = unescape_po(entry.source_text)
    if not source.strip():
        stats["empty"] += 1
        return None

    try:
        candidate = translate(source, target_language)
    except TranslationError as e:
        tqdm.write(f"❌ Failed to translate '{source}': {e}")
        stats["failed"] += 1
        return None

    reason = check_translation(source, candidate, config)
    if reason == "too_long":
        tqdm.write(f"⚠️  Translation of '{source}' exceeds {len(source) * config.get('max_length_ratio', 4)} "
                   f"characters, skipped")
    elif reason:
        tqdm.write(f"⚠️  Translation of '{source}' rejected ({reason.replace('_', ' ')}): '{candidate}'")
    if reason:
        stats[reason] = stats.get(reason, 0) + 1
        return None

    stats["translated"] += 1
    return escape_po(candidate)


def resolve_entry(entry, cursor, out, translate, target_language, config, stats):
    """Write one entry to out, translated when it still needs it."""
    out.writelines(entry.raw_source_lines)

    if not entry.needs_translation:
        stats["already_translated"] += 1
        out.writelines(entry.raw_translation_lines)
    else:
        translation = translate_entry(entry, translate, target_language, config, stats)
        if translation is None:
            out.writelines(entry.raw_translation_lines)
        else:
            ending = line_ending(entry.raw_translation_lines[0])
            out.write(f'msgstr "{translation}"{ending}')

    # blank separator after the entry
    following = cursor.peek()
    if following is not None and not following.strip():
        out.write(next(cursor))


def translate_catalog(cursor, out, translate, target_language, config=None):
    """
    Single pass over cursor writing to out. Returns the run statistics.
    """
    config = dict(config if config is not None else DEFAULT_CONFIG, target_language=target_language)
    stats = dict.fromkeys(STAT_KEYS, 0)

    for item in scan_catalog(cursor):
        if isinstance(item, CatalogEntry):
            resolve_entry(item, cursor, out, translate, target_language, config, stats)
        else:
            out.write(item)

    return stats


def inspect_po_file(path):
    """Return (encoding, line_count) of the file at path."""
    with open(path, 'rb') as f:
        raw = f.read()
    enc = chardet.detect(raw)['encoding']
    if not enc or enc.lower() == 'ascii':
        enc = 'utf-8'
    line_count = raw.count(b'\n') + (1 if raw and not raw.endswith(b'\n') else 0)
    return enc, line_count


def load_po_file(path):
    """Return a {msgid: msgstr} map of the catalog, "" for untranslated entries."""
    enc, _ = inspect_po_file(path)
    translations = {}
    with open(path, 'r', encoding=enc, errors='replace', newline='') as f:
        for item in scan_catalog(LineCursor(f)):
            if isinstance(item, CatalogEntry):
                translations[item.source_text] = item.existing_translation or ""
    return translations


def process_file(src, dst, translate, target_language, config=None, show_progress=True):
    """
    Translate src into dst. The input is opened before the output is created,
    so a missing input never leaves an empty output file behind.
    """
    enc, total = inspect_po_file(src)
    config = dict(config if config is not None else DEFAULT_CONFIG, output_encoding=enc)
    with open(src, 'r', encoding=enc, errors='replace', newline='') as infile, \
            open(dst, 'w', encoding=enc, newline='') as outfile, \
            tqdm(total=total, desc='Translating', unit='line', disable=not show_progress) as progress:
        cursor = LineCursor(infile, progress=progress)
        return translate_catalog(cursor, outfile, translate, target_language, config)


def print_summary(stats, elapsed):
    """Print the counters collected by translate_catalog."""
    print(f"\n🎉 Done in {elapsed:.1f}s")
    print(f"   Translated: {stats['translated']}")
    print(f"   Skipped (too long): {stats['too_long']}")
    print(f"   Skipped (already translated): {stats['already_translated']}")
    rejected = sum(stats.get(key, 0) for key in ('known_bad', 'unencodable', 'wrong_language'))
    if rejected:
        print(f"   Rejected replies: {rejected}")
    if stats.get('failed'):
        print(f"   Failed requests: {stats['failed']}")


def print_dry_run(path, target_language):
    """Report how many entries a real run would send, without any API call."""
    translations = load_po_file(path)
    untranslated = [msgid for msgid, msgstr in translations.items() if msgid.strip() and not msgstr]
    print(f"📊 {path} (target: {target_language})")
    print(f"   Entries: {len(translations)}")
    print(f"   Already translated: {sum(1 for v in translations.values() if v)}")
    print(f"   Would translate: {len(untranslated)}")


def parse_args(argv=None):
    """Command line flags; settings left unset fall back to the config file."""
    parser = argparse.ArgumentParser(
        prog="po-translate-openai",
        description="Fill in missing msgstr entries of a .po file using the OpenAI API.",
    )
    parser.add_argument("-i", "--input", default="my_translations.po",
                        help=".po file to translate")
    parser.add_argument("-o", "--output", default="my_translations_zh.po",
                        help="where to write the translated .po file")
    parser.add_argument("-t", "--target-lang", default=None,
                        help="target language code, e.g. zh-CN, en (default from config)")
    parser.add_argument("--model", default=None,
                        help="OpenAI model name (default from config)")
    parser.add_argument("--openai-api-key", default=None,
                        help=f"OpenAI API key (or set {API_KEY_ENV})")
    parser.add_argument("--config", default=CONFIG_FILE,
                        help="JSON settings file merged over the defaults")
    parser.add_argument("--dry-run", action="store_true",
                        help="only report what would be translated")
    parser.add_argument("--no-progress", action="store_true",
                        help="hide the progress bar")
    parser.add_argument("--save-config", action="store_true",
                        help="write the effective settings back to the config file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    config = load_config(args.config)
    if args.target_lang:
        config['target_language'] = args.target_lang
    if args.model:
        config['model'] = args.model
    if args.save_config:
        save_config(config, args.config)

    target_language = config['target_language']

    if args.dry_run:
        try:
            print_dry_run(args.input, target_language)
        except OSError as e:
            print(f"❌ Cannot read '{args.input}': {e}")
            return 1
        return 0

    try:
        api_key = resolve_api_key(args.openai_api_key)
    except ConfigError as e:
        print(f"❌ {e}")
        return 1

    client = OpenAIClient(
        api_key=api_key,
        model=config['model'],
        base_url=config['api_base_url'],
        timeout=config['timeout'],
        temperature=config['temperature'],
    )

    print(f"🚀 Translating {args.input} -> {args.output} ({target_language}, {config['model']})")
    start_time = time.time()
    try:
        stats = process_file(args.input, args.output, client.translate, target_language,
                             config, show_progress=not args.no_progress)
    except (OSError, UnicodeError) as e:
        print(f"❌ Error processing {args.input}: {e}")
        return 1

    print_summary(stats, time.time() - start_time)
    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user.")
        sys.exit(130)
