"""A cryptoquip solver that finds every legend a dictionary allows."""

import argparse
import collections
import functools
import getpass
import logging
import random
import re
import string
import sys
import time

__version__ = '0.1.0'

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_lowercase
LEGAL_CHARACTERS = frozenset(string.ascii_letters + string.punctuation +
                             string.whitespace)

# Shown in a decoding for cipher letters the legend leaves unset.
UNKNOWN_CHAR = '*'

DEFAULT_TIME_LIMIT = 20
MAX_TIME_LIMIT = 300
DEFAULT_WORDS_FILE = 'words'
SCRAMBLE_SWAPS = 500

_TOKEN_RE = re.compile(r"[A-Za-z][A-Za-z']*")
_DICTIONARY_WORD_RE = re.compile(r"[A-Za-z][A-Za-z'-]*")
_HINT_RE = re.compile(r'^\s*([A-Za-z])\s*=\s*([A-Za-z])\s*$')


class QuipError(Exception):
    """Base class for errors that stop a quip before it is searched."""


class MalformedCiphertextError(QuipError):
    pass


class HintError(QuipError):
    pass


class NoTimeError(QuipError):
    pass


class WordListError(QuipError):
    pass


class FrequencyError(QuipError):
    pass


SearchResult = collections.namedtuple('SearchResult',
                                      ['solutions', 'timed_out', 'elapsed'])


@functools.lru_cache(maxsize=1024)
def hash_word(word):
    """Hashes a word into its similarity equivalent.

    MXM becomes (0, 1, 0), ASDF becomes (0, 1, 2, 3), AFAFA becomes
    (0, 1, 0, 1, 0), etc.
    """

    seen = {}
    out = []
    i = 0
    for c in word:
        if c not in seen:
            seen[c] = i
            i += 1
        out.append(seen[c])
    return tuple(out)


def patterns_match(cipher_token, plain_candidate):
    """Checks whether two strings repeat their characters in the same places.

    XLX matches dad but neither cat (no repeat) nor all (repeat in the
    wrong place). Strings of different lengths never match.
    """

    if len(cipher_token) != len(plain_candidate):
        return False
    return hash_word(cipher_token) == hash_word(plain_candidate)


def tokenize(text):
    """Splits ciphertext into lower-case tokens.

    A token starts with a letter and runs over letters and apostrophes, so
    "don't" stays whole while "well-known" becomes two tokens.
    """

    return [token.lower() for token in _TOKEN_RE.findall(text)]


def check_ciphertext(text):
    """Raises MalformedCiphertextError if text can't be solved as a quip."""

    if text is None or not text.strip():
        raise MalformedCiphertextError('The ciphertext is empty.')
    for c in text:
        if c not in LEGAL_CHARACTERS:
            raise MalformedCiphertextError(
                'The ciphertext contains the illegal character %r.' % c)
    if not tokenize(text):
        raise MalformedCiphertextError('The ciphertext contains no words.')


def parse_hint(hint):
    """Parses a hint like 'b=t' into the pair ('b', 't')."""

    match = _HINT_RE.match(hint)
    if not match:
        raise HintError("The hint '%s' is not of the form a=b." % hint)
    return match.group(1).lower(), match.group(2).lower()


class WordList(object):
    """A restartable source of dictionary words read from a file.

    Each line contributes its first run of characters that starts with a
    letter and continues over letters, apostrophes and hyphens. Lines
    without such a run are skipped.
    """

    def __init__(self, filename):
        self.filename = filename

    def __iter__(self):
        try:
            fp = open(self.filename, encoding='utf-8', errors='replace')
        except IOError as err:
            raise WordListError(str(err)) from err
        with fp:
            for line in fp:
                match = _DICTIONARY_WORD_RE.search(line)
                if match:
                    yield match.group(0).lower()


class Legend(object):
    """A one-to-one mapping from cipher letters to plain letters.

    A legend is never changed once built: merge() hands back a new legend
    or None, so search branches can't see each other's guesses.
    """

    def __init__(self, mapping=None):
        self._map = dict(mapping or {})

    @classmethod
    def from_hints(cls, hints):
        """Builds the starting legend from (cipher, plain) letter pairs.

        Raises:
            HintError: a hint isn't a pair of letters, or two hints
                conflict.
        """

        mapping = {}
        for cipher_char, plain_char in hints:
            cipher_char = cipher_char.lower()
            plain_char = plain_char.lower()
            if (len(cipher_char) != 1 or len(plain_char) != 1 or
                    cipher_char not in ALPHABET or plain_char not in ALPHABET):
                raise HintError("The hint '%s=%s' must map a letter to a "
                                "letter." % (cipher_char, plain_char))
            known = mapping.get(cipher_char)
            if known is not None and known != plain_char:
                raise HintError("The hints give '%s' as both '%s' and '%s'."
                                % (cipher_char, known, plain_char))
            for other_cipher, other_plain in mapping.items():
                if other_plain == plain_char and other_cipher != cipher_char:
                    raise HintError(
                        "The hints give both '%s' and '%s' as '%s'."
                        % (other_cipher, cipher_char, plain_char))
            mapping[cipher_char] = plain_char
        return cls(mapping)

    def __eq__(self, other):
        if not isinstance(other, Legend):
            return NotImplemented
        return self._map == other._map

    def __len__(self):
        return len(self._map)

    def __repr__(self):
        pairs = ' '.join('%s=%s' % item for item in sorted(self._map.items()))
        return 'Legend(%s)' % pairs

    def items(self):
        return sorted(self._map.items())

    def plain_for(self, cipher_char):
        """Returns the plain letter for cipher_char, or None if it's unset."""
        return self._map.get(cipher_char.lower())

    def is_consistent(self, cipher_token, plain_candidate,
                      must_be_complete=False):
        """Checks whether this legend could turn cipher_token into
           plain_candidate.

        Letters the legend doesn't know yet are given the benefit of the
        doubt unless must_be_complete is set. Characters that aren't
        letters must appear unchanged in both words.

        Args:
            cipher_token: The ciphertext word.
            plain_candidate: A plaintext word of the same shape.
            must_be_complete: Fail on any cipher letter with no mapping.
        """

        if len(cipher_token) != len(plain_candidate):
            return False
        for cipher_char, plain_char in zip(cipher_token.lower(),
                                           plain_candidate.lower()):
            if cipher_char not in ALPHABET:
                if cipher_char != plain_char:
                    return False
                continue
            mapped = self._map.get(cipher_char)
            if mapped is None:
                if must_be_complete:
                    return False
            elif mapped != plain_char:
                return False
        return True

    def merge(self, cipher_token, plain_candidate):
        """Extends the legend with the mapping implied by two aligned words.

        This is the only place new mappings get made, so it's where the
        one-to-one rule is kept: a cipher letter can't change its plain
        letter, and a plain letter can't be taken by a second cipher letter.

        Returns:
            A new Legend, or None if the words can't be merged in. This
            legend is left untouched either way.
        """

        if len(cipher_token) != len(plain_candidate):
            return None

        new_map = dict(self._map)
        claimed = set(new_map.values())
        for cipher_char, plain_char in zip(cipher_token.lower(),
                                           plain_candidate.lower()):
            cipher_punct = cipher_char in string.punctuation
            plain_punct = plain_char in string.punctuation
            if cipher_punct != plain_punct:
                return None
            if cipher_punct:
                continue
            if cipher_char not in ALPHABET or plain_char not in ALPHABET:
                return None

            mapped = new_map.get(cipher_char)
            if mapped is not None:
                if mapped != plain_char:
                    return None
            elif plain_char in claimed:
                return None
            else:
                new_map[cipher_char] = plain_char
                claimed.add(plain_char)
        return Legend(new_map)

    def _make_trans(self, unknown):
        from_str = ''
        to_str = ''
        for cipher_char in ALPHABET:
            plain_char = self._map.get(cipher_char, unknown)
            from_str += cipher_char + cipher_char.upper()
            to_str += plain_char + plain_char.upper()
        return str.maketrans(from_str, to_str)

    def decode(self, ciphertext):
        """Decodes ciphertext, keeping case and anything that isn't a letter.

        Cipher letters this legend doesn't know come out as UNKNOWN_CHAR.
        """
        return ciphertext.translate(self._make_trans(UNKNOWN_CHAR))

    def encode(self, plaintext):
        """Encodes plaintext by looking up each plain letter's cipher letter.

        Plain letters that no cipher letter maps to are left as they are.
        """

        from_str = ''
        to_str = ''
        for cipher_char, plain_char in self._map.items():
            from_str += plain_char + plain_char.upper()
            to_str += cipher_char + cipher_char.upper()
        return plaintext.translate(str.maketrans(from_str, to_str))

    def format_table(self):
        plain = ''.join(self._map.get(c, '.') for c in ALPHABET)
        return 'cypher: %s\nplain:  %s' % (ALPHABET, plain)


class Cypherword(object):
    """One word of the ciphertext and the dictionary words shaped like it."""

    def __init__(self, text):
        self.text = text.lower()
        self.candidates = []
        self._seen = set()

    def __repr__(self):
        return 'Cypherword(%r, %d candidates)' % (self.text,
                                                   len(self.candidates))

    def offer(self, word):
        """Keeps word as a candidate if it has this word's letter pattern.

        Returns:
            True if the word was added.
        """

        word = word.lower()
        if word in self._seen or not patterns_match(self.text, word):
            return False
        self._seen.add(word)
        self.candidates.append(word)
        return True

    def find_possible(self, legend, must_be_complete=False):
        """Returns the first candidate the legend allows, or None."""

        for candidate in self.candidates:
            if legend.is_consistent(self.text, candidate, must_be_complete):
                return candidate
        return None

    def is_decrypted_by(self, legend):
        return self.find_possible(legend, must_be_complete=True) is not None


class CharacterFrequencies(object):
    """Counts how often each cipher letter lines up with each plain letter.

    cross[c][p] is the number of times cipher letter c sits over plain
    letter p across all counted candidates; cipher and plain hold the
    totals for each letter.
    """

    def __init__(self):
        self.cross = [[0] * len(ALPHABET) for _ in ALPHABET]
        self.cipher = [0] * len(ALPHABET)
        self.plain = [0] * len(ALPHABET)

    def count(self, cipher_token, plain_candidate):
        for cipher_char, plain_char in zip(cipher_token, plain_candidate):
            if cipher_char not in ALPHABET or plain_char not in ALPHABET:
                continue
            c = ALPHABET.index(cipher_char)
            p = ALPHABET.index(plain_char)
            self.cross[c][p] += 1
            self.cipher[c] += 1
            self.plain[p] += 1

    def ranked(self, cipher_char):
        """Returns the plain letters seen under cipher_char, most hits first.

        Ties keep alphabetical order.
        """

        row = self.cross[ALPHABET.index(cipher_char)]
        hits = [(-row[p], plain_char) for p, plain_char in enumerate(ALPHABET)
                if row[p] > 0]
        return [plain_char for _, plain_char in sorted(hits)]

    def format_table(self):
        """Renders the cross-match counts, plain letters across the top."""

        lines = ['    ' + ''.join('%4s' % c for c in ALPHABET)]
        for c, cipher_char in enumerate(ALPHABET):
            cells = ''.join('%4d' % n if n else '   .' for n in self.cross[c])
            lines.append('%s:  %s' % (cipher_char, cells))
        return '\n'.join(lines)


def tally(cypherwords, legend=None):
    """Builds the cross-match counts for the cypherwords.

    Only candidates the legend allows (gaps permitted) are counted. With
    no legend every candidate of every word counts.

    Raises:
        FrequencyError: there are no cypherwords to count.
    """

    if not cypherwords:
        raise FrequencyError('There are no cypherwords to count.')

    frequencies = CharacterFrequencies()
    for word in cypherwords:
        for candidate in word.candidates:
            if legend is None or legend.is_consistent(word.text, candidate):
                frequencies.count(word.text, candidate)
    return frequencies


class SolutionSet(object):
    """Decoded plaintexts in the order they were found, each kept once."""

    def __init__(self):
        self._solutions = []

    def __iter__(self):
        return iter(self._solutions)

    def __len__(self):
        return len(self._solutions)

    def __contains__(self, plaintext):
        return plaintext in self._solutions

    def add(self, plaintext):
        """Stores plaintext unless it's already here. Returns True if new."""

        if plaintext in self._solutions:
            return False
        self._solutions.append(plaintext)
        return True


class Deadline(object):
    """A wall-clock limit on a search."""

    def __init__(self, seconds, clock=time.monotonic):
        if seconds <= 0:
            raise NoTimeError('There is no time to search (%s sec).'
                              % seconds)
        self.seconds = seconds
        self._clock = clock
        self._expires = clock() + seconds

    def expired(self):
        return self._clock() >= self._expires


class QuipSolver(object):
    """Solves cryptoquips."""

    def __init__(self, ciphertext, words, hints=None,
                 time_limit=DEFAULT_TIME_LIMIT, lenient=True):
        """Initializes the solver and scans the dictionary.

        Args:
            ciphertext: The quip to solve.
            words: An iterable of dictionary words, e.g. a WordList.
            hints: (cipher, plain) letter pairs known to be right.
            time_limit: Seconds the attacks may run, all told.
            lenient: Treat words with no dictionary candidates as solved.
                When False such words can never be solved.

        Raises:
            QuipError: the ciphertext, hints or time limit are unusable, or
                the words can't be read.
        """

        check_ciphertext(ciphertext)
        if time_limit <= 0:
            raise NoTimeError('There is no time to search (%s sec).'
                              % time_limit)

        self.ciphertext = ciphertext
        self.legend = Legend.from_hints(hints or ())
        self.time_limit = time_limit
        self.lenient = lenient
        self.cypherwords = [Cypherword(token) for token in tokenize(ciphertext)]
        self.solutions = SolutionSet()
        # set by the first attack and shared by every attack after it
        self.deadline = None

        for word in words:
            for cypherword in self.cypherwords:
                cypherword.offer(word)

        logger.debug('%d cypherwords: %s', len(self.cypherwords),
                     ', '.join('%s (%d)' % (w.text, len(w.candidates))
                               for w in self.cypherwords))
        logger.debug('starting legend:\n%s', self.legend.format_table())

    def _start_deadline(self):
        if self.deadline is None:
            self.deadline = Deadline(self.time_limit)
        return self.deadline

    def _record(self, legend):
        plaintext = legend.decode(self.ciphertext)
        if self.solutions.add(plaintext):
            logger.debug('solution: %s', plaintext)

    def _result(self, finished, started):
        elapsed = time.perf_counter() - started
        if not finished:
            logger.warning('Ran out of time after %s sec.', self.time_limit)
        return SearchResult(list(self.solutions), not finished, elapsed)

    def _is_satisfied(self, word, legend):
        if not word.candidates:
            return self.lenient
        return word.is_decrypted_by(legend)

    def frequency_attack(self):
        """Searches every legend built from the cross-match counts.

        Each cipher letter is tried only with the plain letters that showed
        up under it in a candidate word, most common first. Letters with no
        such plain letters, and letters given by the hints, are left alone.

        Returns:
            A SearchResult.
        """

        deadline = self._start_deadline()
        started = time.perf_counter()

        frequencies = tally(self.cypherwords, self.legend)
        logger.debug('cross matches:\n%s', frequencies.format_table())
        ranked = [frequencies.ranked(c) for c in ALPHABET]
        for cipher_char, plain_chars in zip(ALPHABET, ranked):
            if plain_chars:
                logger.debug('%s: %s', cipher_char, ' '.join(plain_chars))

        finished = self._build_frequency_legend(0, self.legend, ranked,
                                                deadline)
        return self._result(finished, started)

    def _build_frequency_legend(self, index, legend, ranked, deadline):
        """Recursively assigns cipher letters from index onward.

        Returns:
            False if the deadline passed before the search was done.
        """

        if index == len(ALPHABET):
            if all(self._is_satisfied(word, legend)
                   for word in self.cypherwords):
                self._record(legend)
            return True

        cipher_char = ALPHABET[index]
        if not ranked[index] or legend.plain_for(cipher_char) is not None:
            return self._build_frequency_legend(index + 1, legend, ranked,
                                                deadline)

        for plain_char in ranked[index]:
            if deadline.expired():
                return False
            new_legend = legend.merge(cipher_char, plain_char)
            if new_legend is None:
                continue
            if not self._build_frequency_legend(index + 1, new_legend, ranked,
                                                deadline):
                return False
        return True

    def word_block_attack(self):
        """Solves the quip one word at a time.

        For each candidate of the first word that fits the hints, the
        legend is extended with that word's letters and the next word is
        tried the same way. Legends that get through every word decode a
        solution.

        Returns:
            A SearchResult. If time runs out the whole search stops and
            timed_out is set.
        """

        deadline = self._start_deadline()
        started = time.perf_counter()
        finished = self._word_block(self.legend, deadline)
        return self._result(finished, started)

    def _word_block(self, legend, deadline):
        """Walks the words depth first on an explicit stack.

        Each frame is (word index, legend, candidate iterator), so long
        quips don't run into the recursion limit.

        Returns:
            False if the deadline passed before the search was done.
        """

        last = len(self.cypherwords) - 1
        stack = []
        self._push_word(stack, 0, legend)
        while stack:
            index, legend, candidates = stack[-1]
            candidate = next(candidates, None)
            if candidate is None:
                stack.pop()
                if deadline.expired():
                    return False
                continue
            if deadline.expired():
                return False

            word = self.cypherwords[index]
            if not legend.is_consistent(word.text, candidate):
                continue
            new_legend = legend.merge(word.text, candidate)
            if new_legend is None:
                continue
            if index == last:
                self._record(new_legend)
            else:
                self._push_word(stack, index + 1, new_legend)
        return True

    def _push_word(self, stack, index, legend):
        # lenient mode passes over words with no candidates; running off
        # the end means the legend has solved the quip
        while (index < len(self.cypherwords) and self.lenient and
               not self.cypherwords[index].candidates):
            index += 1
        if index == len(self.cypherwords):
            self._record(legend)
            return
        stack.append((index, legend, iter(self.cypherwords[index].candidates)))

    def print_report(self, result, html=False):
        """Prints the result of an attack."""

        if result.timed_out:
            line = '*** Ran out of time after %s sec. ***' % self.time_limit
            print(line + '<BR>' if html else line)

        if not result.solutions:
            if not result.timed_out:
                line = '*** No solutions to this could be found! ***'
                print(line + '<BR>' if html else line)
            return

        runtime_us = int(result.elapsed * 1000000)
        for plaintext in result.solutions:
            if html:
                print(plaintext + '<BR>')
            else:
                print('[%d us] Solution: %s' % (runtime_us, plaintext))


def make_encrypting_legend(rng=None):
    """Makes a scrambled legend in which no letter stands for itself."""

    rng = rng or random.Random()
    letters = list(ALPHABET)
    size = len(letters)
    for _ in range(SCRAMBLE_SWAPS):
        a = rng.randrange(size)
        b = (a + rng.randrange(size)) % size
        letters[a], letters[b] = letters[b], letters[a]

    for i in range(size):
        if letters[i] == ALPHABET[i]:
            j = (i + rng.randrange(size)) % size
            if j == i:
                j = (i + 1) % size
            letters[i], letters[j] = letters[j], letters[i]
    return Legend(zip(ALPHABET, letters))


def encrypt_plaintext(plaintext, rng=None):
    """Encrypts plaintext into a quip for testing the solver.

    Returns:
        A (ciphertext, legend, hint) tuple, where legend decodes the
        ciphertext and hint is one (cipher, plain) pair from it.
    """

    if not any(c.isalpha() for c in plaintext):
        raise MalformedCiphertextError('There are no letters to encrypt.')

    rng = rng or random.Random()
    legend = make_encrypting_legend(rng)
    ciphertext = legend.encode(plaintext)

    i = rng.randrange(len(plaintext))
    while plaintext[i] not in string.ascii_letters:
        i = (i + 1) % len(plaintext)
    plain_char = plaintext[i].lower()
    return ciphertext, legend, (legend.encode(plain_char), plain_char)


def _print_encryption(args):
    rng = random.Random(args.seed)
    ciphertext, legend, hint = encrypt_plaintext(args.text, rng)

    if args.l:
        print('Generated encryption legend:')
        for cipher_char, plain_char in legend.items():
            print('   %s = %s' % (cipher_char, plain_char))
        print('')

    if args.c:
        print("quip '%s' -k%s=%s" % (ciphertext, hint[0], hint[1]))
    else:
        print(ciphertext)
        print(' %s=%s' % hint)


def _configure_logging(args):
    """Attaches the handlers asked for on the command line.

    Returns:
        The handlers, so they can be removed when the run is over.
    """

    handlers = []
    logger.setLevel(logging.DEBUG if args.v else logging.INFO)
    if args.v:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter('%(message)s'))
        handlers.append(handler)
    if args.log:
        handler = logging.FileHandler(args.log)
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s (' + getpass.getuser() + ') %(message)s',
            datefmt='%a %b %d %H:%M:%S %Y'))
        handlers.append(handler)
    for handler in handlers:
        logger.addHandler(handler)
    return handlers


def _solve(args):
    time_limit = min(args.T, MAX_TIME_LIMIT)
    hints = [parse_hint(hint) for hint in args.k]
    logger.info("starting: quip='%s' time=%d", args.text, time_limit)

    solver = QuipSolver(args.text, WordList(args.f), hints, time_limit,
                        lenient=not args.s)

    attacks = []
    if args.F:
        attacks.append(solver.frequency_attack)
    if args.W or not args.F:
        attacks.append(solver.word_block_attack)

    result = None
    for attack in attacks:
        result = attack()
        if result.timed_out:
            break
    solver.print_report(result, html=args.H)
    logger.info("terminating: quip='%s'", args.text)


def main(argv=None):
    """Main entry point."""

    print('quip v' + __version__ + '\n')

    parser = argparse.ArgumentParser(
        prog='quip', description='Solves cryptoquips.')
    parser.add_argument('text',
                        help='The (quoted) cyphertext, or plaintext with -e.')
    parser.add_argument('-k', metavar='a=b', action='append', default=[],
                        help="Known substitution 'b' for 'a'.")
    parser.add_argument('-T', metavar='sec', type=int,
                        default=DEFAULT_TIME_LIMIT,
                        help='Limit the search time, shared by all attacks, '
                             'to this many seconds.')
    parser.add_argument('-f', metavar='words', default=DEFAULT_WORDS_FILE,
                        help='Filename of the word list.')
    parser.add_argument('-F', action='store_true',
                        help="Try the 'Frequency Attack'.")
    parser.add_argument('-W', action='store_true',
                        help="Try the 'Word Block Attack' (the default).")
    parser.add_argument('-H', action='store_true',
                        help='Format the output as HTML.')
    parser.add_argument('-s', action='store_true',
                        help='Strict mode: words missing from the word list '
                             'are never solved.')
    parser.add_argument('-e', action='store_true',
                        help='Encrypt the text instead of solving it.')
    parser.add_argument('-c', action='store_true',
                        help='With -e, print a quip command line.')
    parser.add_argument('-l', action='store_true',
                        help='With -e, show the encrypting legend.')
    parser.add_argument('-v', action='store_true',
                        help='Verbose mode.')
    parser.add_argument('--log', metavar='file',
                        help='Append start and finish records to this file.')
    parser.add_argument('--seed', type=int,
                        help='Seed for the encryption scramble.')

    args = parser.parse_args(argv)
    handlers = _configure_logging(args)

    try:
        if args.e:
            _print_encryption(args)
        else:
            _solve(args)
    except QuipError as err:
        line = '*** Error *** ' + str(err)
        print(line + '<BR>' if args.H else line)
        return 1
    finally:
        for handler in handlers:
            logger.removeHandler(handler)
            handler.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
