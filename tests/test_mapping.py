import base64

import pytest

from tagforge import flac, id3v1, id3v2, mapping, ogg, vorbis
from tagforge.encoding import TextEncoding
from tagforge.exceptions import ValidationError
from tagforge.metadata import Picture

from conftest import (
    JPEG_BYTES,
    PNG_BYTES,
    build_flac,
    build_id3v2,
    build_ogg_vorbis,
    flac_picture,
    id3_frame,
    metadata_block_picture,
    streaminfo,
    text_payload,
    vorbis_body,
)


LATIN1 = TextEncoding.ISO_8859_1


def comm_payload(text, description='', language=b'eng', encoding=0):
    return bytes([encoding]) + language + description.encode('latin-1') + b'\x00' + text.encode('latin-1')


class TestValueTransforms:
    """Tests for the per-field conversions."""

    @pytest.mark.parametrize("value,expected", [
        ('2019-04-01', '2019'),
        ('2019', '2019'),
        (' 1987 ', '1987'),
        ('circa 90s', 'circa 90s'),
        ('', None),
        (None, None),
    ])
    def test_extract_year(self, value, expected):
        assert mapping.extract_year(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ('3/12', '3'),
        ('7', '7'),
        ('/12', None),
        (None, None),
    ])
    def test_parse_track(self, value, expected):
        assert mapping.parse_track(value) == expected

    def test_merge_track(self):
        assert mapping.merge_track('5', '3/12') == '5/12'
        assert mapping.merge_track('5', '3') == '5'
        assert mapping.merge_track('5/9', '3/12') == '5/9'
        assert mapping.merge_track('5', None) == '5'

    @pytest.mark.parametrize("value,expected", [
        ('(17)', 'Rock'),
        ('17', 'Rock'),
        ('(17)Heavy', 'Heavy'),
        ('(200)', '(200)'),
        ('Shoegaze', 'Shoegaze'),
        ('', None),
    ])
    def test_resolve_genre(self, value, expected):
        assert mapping.resolve_genre(value) == expected


class TestId3v1Mapping:
    """Tests for ID3v1 to canonical and back."""

    def test_read(self, id3v1_bytes):
        metadata = mapping.read_id3v1(id3v1.parse(id3v1_bytes))
        assert metadata.title == 'V1 Title'
        assert metadata.track == '7'
        assert metadata.genre == 'Rock'
        assert metadata.album is None

    def test_apply(self, id3v1_bytes):
        tag = mapping.apply_id3v1(id3v1.parse(id3v1_bytes),
                                  {'title': 'New', 'year': '2004-05-06', 'track': '9/10', 'album': None})
        assert tag.title == 'New'
        assert tag.year == '2004'
        assert tag.track == 9
        assert tag.album == ''
        assert tag.artist == 'V1 Artist'

    def test_unknown_genre_warns(self, id3v1_bytes, caplog):
        tag = mapping.apply_id3v1(id3v1.parse(id3v1_bytes), {'genre': 'Vaporwave'})
        assert tag.genre == id3v1.NO_GENRE
        assert 'Vaporwave' in caplog.text

    def test_lyrics_and_cover_ignored(self, id3v1_bytes, caplog):
        tag = id3v1.parse(id3v1_bytes)
        assert mapping.apply_id3v1(tag, {'lyrics': 'la la', 'cover': None}) == tag
        assert 'lyrics' in caplog.text

    @pytest.mark.parametrize("track", ['0', '256', 'A'])
    def test_invalid_track(self, id3v1_bytes, track):
        with pytest.raises(ValidationError):
            mapping.apply_id3v1(id3v1.parse(id3v1_bytes), {'track': track})


class TestId3v2Mapping:
    """Tests for ID3v2 frames to canonical and back."""

    def test_read(self, id3v23_bytes):
        metadata = mapping.read_id3v2(id3v2.parse(id3v23_bytes))
        assert metadata.title == 'Old'
        assert metadata.artist == 'Artist'
        assert metadata.track == '3'
        assert metadata.year is None

    def test_v22_frames(self):
        data = build_id3v2([
            id3_frame('TT2', text_payload('T'), major=2),
            id3_frame('TYE', text_payload('1999'), major=2),
            id3_frame('TCO', text_payload('(8)'), major=2),
        ], major=2)
        metadata = mapping.read_id3v2(id3v2.parse(data))
        assert (metadata.title, metadata.year, metadata.genre) == ('T', '1999', 'Jazz')

    def test_year_preference_by_version(self):
        frames = [id3_frame('TYER', text_payload('2001'), major=4),
                  id3_frame('TDRC', text_payload('2002-03-04'), major=4)]
        assert mapping.read_id3v2(id3v2.parse(build_id3v2(frames, major=4))).year == '2002'
        frames = [id3_frame('TDRC', text_payload('2002')), id3_frame('TYER', text_payload('2001'))]
        assert mapping.read_id3v2(id3v2.parse(build_id3v2(frames))).year == '2001'

    def test_year_write_replaces_all_year_frames(self):
        frames = [id3_frame('TDRC', text_payload('2002')), id3_frame('TYER', text_payload('2001'))]
        tag = mapping.apply_id3v2(id3v2.parse(build_id3v2(frames)), {'year': '2010'})
        assert [f.frame_id for f in tag.frames] == ['TYER']
        assert mapping.read_id3v2(tag).year == '2010'

    def test_comment_prefers_empty_description(self):
        frames = [
            id3_frame('COMM', comm_payload('tagged', 'iTunNORM')),
            id3_frame('COMM', comm_payload('plain', '', b'deu')),
        ]
        tag = id3v2.parse(build_id3v2(frames))
        assert mapping.read_id3v2(tag).comment == 'plain'

        updated = mapping.apply_id3v2(tag, {'comment': 'new'})
        comments = [id3v2.decode_comment(updated.content(f)) for f in updated.frames]
        assert comments[0].text == 'tagged'
        assert comments[1] == id3v2.CommentContent('deu', '', 'new')

    def test_comment_delete_removes_all(self):
        frames = [id3_frame('COMM', comm_payload('a', 'x')), id3_frame('COMM', comm_payload('b'))]
        tag = mapping.apply_id3v2(id3v2.parse(build_id3v2(frames)), {'comment': None})
        assert tag.frames == ()
        assert mapping.read_id3v2(tag).comment is None

    def test_lyrics(self, id3v23_bytes):
        tag = mapping.apply_id3v2(id3v2.parse(id3v23_bytes), {'lyrics': 'Verse one'})
        assert tag.frames[-1].frame_id == 'USLT'
        assert mapping.read_id3v2(tag).lyrics == 'Verse one'

    def test_track_keeps_total(self, id3v23_bytes):
        tag = mapping.apply_id3v2(id3v2.parse(id3v23_bytes), {'track': '5'})
        trck = tag.frames_with_id('TRCK')[0]
        assert id3v2.decode_text(tag.content(trck)) == '5/12'
        assert mapping.read_id3v2(tag).track == '5'

    def test_replacement_keeps_position(self, id3v23_bytes):
        tag = mapping.apply_id3v2(id3v2.parse(id3v23_bytes), {'title': 'New'})
        assert [f.frame_id for f in tag.frames] == ['TIT2', 'TPE1', 'XYZF', 'TRCK']

    def test_non_latin_text_uses_utf16_before_v24(self, id3v23_bytes):
        tag = mapping.apply_id3v2(id3v2.parse(id3v23_bytes), {'artist': '坂本龍一'})
        tpe1 = tag.frames_with_id('TPE1')[0]
        assert tpe1.payload[0] == 1
        assert mapping.read_id3v2(tag).artist == '坂本龍一'

    def test_cover(self, id3v23_bytes):
        picture = Picture(mime_type='image/png', description='front', data=PNG_BYTES)
        tag = mapping.apply_id3v2(id3v2.parse(id3v23_bytes), {'cover': picture})
        assert mapping.read_id3v2(tag).cover == picture

        removed = mapping.apply_id3v2(tag, {'cover': None})
        assert removed.frames_with_id('APIC') == []

    def test_malformed_comment_skipped(self, caplog):
        frames = [id3_frame('TIT2', text_payload('Hello')), id3_frame('COMM', b'\x00en')]
        tag = id3v2.parse(build_id3v2(frames))
        metadata = mapping.read_id3v2(tag)
        assert metadata.title == 'Hello'
        assert metadata.comment is None
        assert 'COMM' in caplog.text

        updated = mapping.apply_id3v2(tag, {'comment': 'new'})
        assert updated.frames[1].payload == b'\x00en'
        assert mapping.read_id3v2(updated).comment == 'new'

    def test_malformed_picture_skipped(self):
        frames = [id3_frame('APIC', b'\x00image/png\x00'), id3_frame('TIT2', text_payload('Hello'))]
        tag = id3v2.parse(build_id3v2(frames))
        assert mapping.read_id3v2(tag).cover is None

        picture = Picture(mime_type='image/png', data=PNG_BYTES)
        updated = mapping.apply_id3v2(tag, {'cover': picture})
        assert [f.frame_id for f in updated.frames] == ['APIC', 'TIT2', 'APIC']
        assert mapping.read_id3v2(updated).cover == picture

    def test_cover_prefers_front(self):
        back = id3v2.encode_picture(Picture(mime_type='image/jpeg', data=JPEG_BYTES, picture_type=4), 3, LATIN1)
        front = id3v2.encode_picture(Picture(mime_type='image/png', data=PNG_BYTES), 3, LATIN1)
        tag = id3v2.parse(build_id3v2([id3_frame('APIC', back), id3_frame('APIC', front)]))
        assert mapping.read_id3v2(tag).cover.data == PNG_BYTES


class TestVorbisMapping:
    """Tests for Vorbis Comment fields."""

    def test_read_with_aliases(self):
        comment = vorbis.parse(vorbis_body(['YEAR=1990', 'DESCRIPTION=desc', 'UNSYNCEDLYRICS=words',
                                            'tracknumber=2/8']))
        metadata = mapping.read_vorbis(comment)
        assert metadata.year == '1990'
        assert metadata.comment == 'desc'
        assert metadata.lyrics == 'words'
        assert metadata.track == '2'

    def test_write_removes_aliases(self):
        comment = vorbis.parse(vorbis_body(['YEAR=1990', 'DATE=1991', 'COMMENT=c', 'DESCRIPTION=d']))
        updated = mapping.apply_vorbis(comment, {'year': '2000', 'comment': None})
        assert updated.entries == (('DATE', '2000'),)

    def test_track_keeps_total(self):
        comment = vorbis.parse(vorbis_body(['TRACKNUMBER=4/10']))
        assert mapping.apply_vorbis(comment, {'track': '6'}).get('TRACKNUMBER') == '6/10'

    def test_cover_as_metadata_block_picture(self):
        picture = Picture(mime_type='image/png', data=PNG_BYTES, width=1, height=1, depth=24)
        comment = mapping.apply_vorbis(vorbis.VorbisComment(), {'cover': picture})
        assert flac.parse_picture(base64.b64decode(comment.get('METADATA_BLOCK_PICTURE'))) == picture
        assert mapping.read_vorbis(comment).cover == picture

    def test_legacy_coverart(self):
        encoded = base64.b64encode(JPEG_BYTES).decode('ascii')
        comment = vorbis.parse(vorbis_body([f'COVERART={encoded}', 'COVERARTMIME=image/jpeg']))
        cover = mapping.read_vorbis(comment).cover
        assert cover.mime_type == 'image/jpeg'
        assert cover.data == JPEG_BYTES

        cleared = mapping.apply_vorbis(comment, {'cover': None})
        assert cleared.entries == ()

    def test_bad_picture_entry_skipped(self, caplog):
        comment = vorbis.parse(vorbis_body(['METADATA_BLOCK_PICTURE=AAAA']))
        assert mapping.read_vorbis(comment).cover is None
        assert 'METADATA_BLOCK_PICTURE' in caplog.text


class TestFlacMapping:
    """Tests for FLAC comment and PICTURE blocks."""

    def test_read(self, flac_bytes):
        metadata = mapping.read_flac(flac.parse(flac_bytes))
        assert metadata.year == '2019'
        assert metadata.track == '4'
        assert metadata.cover is None

    def test_native_picture_wins(self):
        data = build_flac([
            (0, streaminfo()),
            (4, vorbis_body([f'METADATA_BLOCK_PICTURE={metadata_block_picture(data=JPEG_BYTES, mime="image/jpeg")}'])),
            (6, flac_picture()),
        ])
        assert mapping.read_flac(flac.parse(data)).cover.data == PNG_BYTES

    def test_cover_goes_to_picture_block(self, flac_bytes):
        picture = Picture(mime_type='image/png', data=PNG_BYTES)
        container = mapping.apply_flac(flac.parse(flac_bytes), {'cover': picture})
        assert [b.block_type for b in container.blocks] == [0, 4, 6, 1]
        assert container.vorbis_comment().get('METADATA_BLOCK_PICTURE') is None

    def test_cover_delete_clears_embedded_entries(self):
        data = build_flac([
            (0, streaminfo()),
            (4, vorbis_body(['TITLE=t', f'METADATA_BLOCK_PICTURE={metadata_block_picture()}'])),
            (6, flac_picture()),
        ])
        container = mapping.apply_flac(flac.parse(data), {'cover': None})
        assert [b.block_type for b in container.blocks] == [0, 4]
        assert container.vorbis_comment().entries == (('TITLE', 't'),)
        assert mapping.read_flac(container).cover is None

    def test_comment_block_created_when_missing(self):
        container = flac.parse(build_flac([(0, streaminfo())]))
        updated = mapping.apply_flac(container, {'title': 'Fresh'})
        assert updated.vorbis_comment().get('TITLE') == 'Fresh'

    def test_delete_without_comment_block_adds_nothing(self):
        container = flac.parse(build_flac([(0, streaminfo())]))
        assert mapping.apply_flac(container, {'title': None}).blocks == container.blocks


class TestOggMapping:
    """Tests for OGG comment headers."""

    def test_read_and_apply(self):
        container = ogg.parse(build_ogg_vorbis(['TITLE=a', 'GENRE=Ambient']))
        assert mapping.read_ogg(container).genre == 'Ambient'
        updated = mapping.apply_ogg(container, {'genre': None, 'album': 'Alb'})
        assert updated.comment.entries == (('TITLE', 'a'), ('ALBUM', 'Alb'))
