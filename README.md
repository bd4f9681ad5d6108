# maildig

Read Apple Mail's on-disk message store from Python: find the `.emlx`
file behind a message row, parse it into a body and attachments, and
read the text of PDF and HTML attachments.

Only the standard library is used.

## Installing

```
pip install maildig
```

For running the tests:

```
pip install "maildig[test]"
pytest
```

## Finding a message file

Apple Mail keeps message bodies in `.emlx` files under a versioned folder
such as `~/Library/Mail/V10`. The functions in `maildig.locator` turn a
mailbox URL and a message row id into a path. They try direct
`Messages/` paths first, then hashed `Data/` buckets, and finally
mailbox-local indexes keyed by file stem or `Message-ID`.

```python
from pathlib import Path
from maildig.locator import locate_emlx, locate_emlx_quick_with_hints

mail_dir = Path.home() / "Library" / "Mail"
path = locate_emlx(mail_dir, "V10", "imap://user@example.com/INBOX", 42)

# Cheaper lookup for list views: no directory walk, no new index is built.
path = locate_emlx_quick_with_hints(
    mail_dir, "V10", "ews://account/Inbox", 194184,
    ["194184", "99974"], "<note@example.com>",
)
```

Each function returns a `Path`, or `None` when nothing matches.
`locate_emlx_with_hints` also walks the mailbox directories and builds
mailbox indexes when the direct paths fail. `lookup_mailbox_header` finds a
file in one mailbox directory by its `Message-ID`.

The helpers `parse_mailbox_url`, `percent_decode`, `file_name_candidates`,
`matches_candidate` and `hashed_data_bucket_segments` are public as well.

Resolved paths, `Message-ID` headers and mailbox indexes are cached in
memory in `maildig.mailindex.CACHE`, a `LocatorCache`. Call
`maildig.mailindex.clear_caches()` to empty it. `build_mailbox_index` and
`read_message_id_header` in the same module can be used directly.

## Parsing a message

```python
from maildig.parser import parse_emlx, parse_emlx_without_attachment_content

email = parse_emlx(path)
print(email.body_text)
for attachment in email.attachments:
    print(attachment.filename, attachment.mime_type, attachment.size_bytes)
```

`parse_emlx` returns a `ParsedEmail` with `body_text`, `body_html` and a
list of `RawAttachment` objects. Each attachment has `filename`,
`mime_type`, `size_bytes`, `content` and `is_inline`.

If a message has only an HTML body, `body_text` is derived from it. If it
has only a plain-text body, `body_html` is an escaped version of that text.

`parse_emlx_without_attachment_content` keeps the sizes but leaves
`content` as `None`. Attachments that Apple Mail stored beside the message,
under `Attachments/<id>/`, are picked up too. A missing or malformed file
raises `BodyFileNotFoundError`.

## Reading attachment text

```python
from maildig.pdf import pdf_to_text, PdfError
from maildig.htmltext import html_to_plain_text
from maildig.textformats import classify_mime, TextFormat

fmt = classify_mime(attachment.mime_type)
if fmt is TextFormat.PDF:
    try:
        print(pdf_to_text(attachment.content))
    except PdfError as exc:
        print("skipped:", exc)
elif fmt is TextFormat.HTML:
    print(html_to_plain_text(attachment.content.decode("utf-8")))
```

- `pdf_to_text` returns the text layer of every page. It does no OCR. It
  raises `PdfParseError`, `EmptyDocumentError` or `NoTextLayerError`, all of
  which are subclasses of `PdfError`.
- `html_to_plain_text` drops `script` and `style` content, decodes
  entities, and puts each text node on its own line.
- `classify_mime` sorts a MIME type into a `TextFormat` member. The members
  are JSON, XML, CSV, Markdown, HTML, PDF, DOCX, XLSX, PPTX, legacy Office,
  image, audio/video, plain text and binary.

## What it does not do

- There is no single function that turns any attachment into text; the
  caller picks a converter from the `classify_mime` result.
- There are no converters for DOCX, XLSX or PPTX documents, even though
  `classify_mime` recognises those types.
- There is no command-line tool and no server. The package is a library
  only.