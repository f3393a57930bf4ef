from constellation.utils.markdown_sections import (bullet_items, get_section, keep_last_items, keep_recent_dates,
                                                   make_section, normalize_heading, parse, replace_section,
                                                   restore_missing_items, section_titles)

DOCUMENT = '# Title\n\n## 🕯️ Recovered Memories\n- one\n\n## 💓 The Daily Pulse\ntext'


class TestParse:

    def test_render_is_lossless(self):
        assert parse(DOCUMENT).render() == DOCUMENT

    def test_splits_preamble_and_sections(self):
        document = parse(DOCUMENT)
        assert document.preamble == '# Title\n'
        assert [section.title for section in document.sections] == ['🕯️ Recovered Memories', '💓 The Daily Pulse']

    def test_subheadings_stay_in_their_section(self):
        markdown = '## Top\n### Book\nBy Someone'
        assert section_titles(markdown) == ['Top']
        assert get_section(markdown, 'Top').text == '### Book\nBy Someone'

    def test_headings_inside_code_fences_are_ignored(self):
        markdown = '## Notes\n```\n## not a heading\n```'
        assert section_titles(markdown) == ['Notes']


class TestHeadingMatching:

    def test_normalize_drops_emoji_and_case(self):
        assert normalize_heading('🕯️ Recovered Memories') == 'recovered memories'

    def test_get_section_ignores_emoji(self):
        section = get_section(DOCUMENT, 'Recovered Memories')
        assert section is not None
        assert section.heading == '## 🕯️ Recovered Memories'

    def test_prefix_match(self):
        markdown = '## 🧩 The Synthesis (Current Theory)\nbody'
        assert get_section(markdown, 'The Synthesis').text == 'body'

    def test_missing_section(self):
        assert get_section(DOCUMENT, 'Archive') is None


class TestReplaceSection:

    def test_replaces_middle_section_keeping_spacing(self):
        result = replace_section(DOCUMENT, 'Recovered Memories', make_section('## 🕯️ Recovered Memories', '- two'))
        assert result == '# Title\n\n## 🕯️ Recovered Memories\n- two\n\n## 💓 The Daily Pulse\ntext'

    def test_appends_missing_section(self):
        result = replace_section('# T\n\n## A\n- x', 'B', make_section('B', '- y'))
        assert result == '# T\n\n## A\n- x\n\n## B\n- y'


class TestBullets:

    def test_continuation_lines_stay_with_item(self):
        assert bullet_items('\n- a\n  more\n- b') == ['- a\n  more', '- b']

    def test_numbered_and_plus_items(self):
        assert bullet_items('\n1. a\n2) b\n+ c\n**Mood:** calm') == ['1. a', '2) b', '+ c']

    def test_keep_recent_dates_in_numbered_list(self):
        body = '\n1. **2024-01-01:** a\n2. **2024-01-02:** b'
        assert keep_recent_dates(body, 1) == '\n2. **2024-01-02:** b'

    def test_keep_last_items(self):
        assert keep_last_items('\n- a\n- b\n- c', 2) == '\n- b\n- c'

    def test_keep_last_items_under_limit_is_unchanged(self):
        assert keep_last_items('\n- a', 5) == '\n- a'

    def test_keep_recent_dates(self):
        body = '\n- **2024-01-01:** a\n- **2024-01-02:** b\n- **2024-01-03:** c'
        assert keep_recent_dates(body, 2) == '\n- **2024-01-02:** b\n- **2024-01-03:** c'

    def test_keep_recent_dates_leaves_undated_items(self):
        body = '\n- note\n- **2024-01-01:** a\n- **2024-01-02:** b'
        assert keep_recent_dates(body, 1) == '\n- note\n- **2024-01-02:** b'

    def test_restore_missing_items_prepends_dropped(self):
        assert restore_missing_items('\n- a\n- b', '\n- c') == '\n- a\n- b\n- c'

    def test_restore_missing_items_replaces_placeholder(self):
        assert restore_missing_items('\n- a\n- b', '\n(Potential plot holes)') == '\n- a\n- b'

    def test_restore_missing_items_noop(self):
        assert restore_missing_items('\n- a', '\n- a\n- b') == '\n- a\n- b'
