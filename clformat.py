"""An implementation of Common Lisp's FORMAT."""

import decimal
import logging
import re
import sys
import unicodedata
from io import StringIO
from charpos import CharposStream
from numerals import convert, commafy, roman_int, cardinal, ordinal

__all__ = ["Formatter", "FormatConfig", "format", "join_english",
           "FormatError", "MalformedDirective", "FormatRuntimeError",
           "ArgumentExhausted", "InvalidArgumentType", "SelectorOutOfRange"]

logger = logging.getLogger(__name__)

class FormatError(Exception):
    def __init__(self, control, *args):
        self.control = control
        self.args = args

    def __str__(self):
        return format(None, self.control, *self.args)

class MalformedDirective(FormatError):
    offset = 2
    def __init__(self, control, index, message, *args):
        super(MalformedDirective, self).__init__("~?~%~V@T\"~A\"~%~V@T^",
                                                 message, args, self.offset,
                                                 control,
                                                 index + self.offset + 1)
        self.position = index

class FormatRuntimeError(FormatError):
    """Base class for errors detected while applying directives.  The
    innermost directive being applied is recorded as the error propagates."""

    directive = None
    position = None

    def locate(self, directive):
        if self.directive is None:
            self.directive = directive
            self.position = directive.start

    def __str__(self):
        message = super(FormatRuntimeError, self).__str__()
        if self.directive is None:
            return message
        return format(None, "~A (in ~S at position ~D)",
                      message, str(self.directive), self.position)

class ArgumentExhausted(FormatRuntimeError):
    def __init__(self, arguments):
        super(ArgumentExhausted, self).__init__("no more arguments")
        self.arguments = arguments

class InvalidArgumentType(FormatRuntimeError):
    pass

class SelectorOutOfRange(FormatRuntimeError):
    def __init__(self, selector, nclauses):
        super(SelectorOutOfRange, self).__init__(
            "clause ~D selected, but there ~[are no clauses~;is only ~:*~D "
            "clause~:;are only ~:*~D clauses~]", selector, nclauses)
        self.selector = selector

class UpAndOut(Exception):
    pass

class UpUpAndOut(Exception):
    pass

class FormatConfig(object):
    """Settings that directives consult for their defaults.  An instance is
    passed explicitly to each formatting call; there is no global state."""

    def __init__(self, commachar=",", comma_interval=3, padchar=" ",
                 line_length=None, uppercase_roman=False):
        self.commachar = commachar
        self.comma_interval = comma_interval
        self.padchar = padchar
        self.line_length = line_length
        self.uppercase_roman = uppercase_roman

default_config = FormatConfig()

class Arguments(object):
    """The argument cursor: a read-only view of the argument list and a
    position in it.  Moving the position never takes it outside [0, len]."""

    def __init__(self, args, outer=None, config=None):
        self.args = args
        self.outer = outer
        self.config = config or (outer.config if outer else default_config)
        self.len = len(self.args)
        self.cur = 0
        self.empty = (self.len == 0)

    def __len__(self): return self.len
    def __getitem__(self, key): return self.args[key]

    def next(self):
        if self.empty:
            raise ArgumentExhausted(self)
        cur = self.cur
        arg = self.args[cur]
        cur += 1
        self.cur = cur
        self.empty = (cur == self.len)
        return arg

    def peek(self, n=0):
        i = self.cur + n
        return self.args[i] if 0 <= i < self.len else None

    def goto(self, n):
        self.cur = max(0, min(n, self.len))
        self.empty = (self.cur == self.len)

    def jump(self, delta):
        self.goto(self.cur + delta)

    @property
    def remaining(self):
        return self.len - self.cur

    def nested(self, value, outer=None):
        """Return a new Arguments instance over the list or tuple value."""
        if not isinstance(value, (list, tuple)):
            raise InvalidArgumentType("expected a list of arguments, not ~S",
                                      value)
        return Arguments(value, outer, self.config)

class Modifiers:
    colon = frozenset([":"])
    atsign = frozenset(["@"])
    both = frozenset([":@"])
    either = colon | atsign
    all = either | both

def is_integer(x):
    return isinstance(x, int) and not isinstance(x, bool)

# The closed set of directive characters; the parser resolves each directive
# to its class here, once.
format_directives = dict()

def register_directive(char):
    assert len(char) == 1, "only single-character directives allowed"
    def register(cls):
        assert issubclass(cls, Directive), "invalid format directive class"
        format_directives[char.upper()] = format_directives[char.lower()] = cls
        return cls
    return register

class Directive(object):
    """A parsed directive: its prefix parameters, modifiers, and the span of
    the control string it came from.  Subclasses implement format, which
    consumes arguments and writes to the output stream."""

    variable_parameter = object()
    remaining_parameter = object()
    modifiers_allowed = None
    parameters_allowed = 0
    need_charpos = False

    def __init__(self, params, colon, atsign, control, start, end, parent=None):
        if (colon or atsign) and self.modifiers_allowed is None:
            raise FormatError("neither colon nor at-sign allowed "
                              "for this directive")
        elif (colon and atsign) and ":@" not in self.modifiers_allowed:
            raise FormatError("cannot specify both colon and at-sign")
        elif colon and ":" not in self.modifiers_allowed:
            raise FormatError("colon not allowed for this directive")
        elif atsign and "@" not in self.modifiers_allowed:
            raise FormatError("at-sign not allowed for this directive")
        if len(params) > self.parameters_allowed:
            raise FormatError("no~@[ more than ~D~] parameter~:P allowed "
                              "for this directive", self.parameters_allowed)

        self.params = params; self.colon = colon; self.atsign = atsign
        self.control = control; self.start = start; self.end = end
        self.parent = parent

    def __str__(self): return self.control[self.start:self.end]
    def __len__(self): return self.end - self.start

    def format(self, stream, args):
        pass

    def param(self, n, args, default=None):
        if n < len(self.params):
            p = self.params[n]
            if p is Directive.variable_parameter: p = args.next()
            elif p is Directive.remaining_parameter: p = args.remaining
            return p if p is not None else default
        else:
            return default

    def int_param(self, n, args, default=None):
        p = self.param(n, args, default)
        if p is not None and not is_integer(p):
            raise InvalidArgumentType("parameter ~D must be an integer, "
                                      "not ~S", n + 1, p)
        return p

    def char_param(self, n, args, default=None):
        p = self.param(n, args, default)
        if p is not None and not (isinstance(p, str) and len(p) == 1):
            raise InvalidArgumentType("parameter ~D must be a character, "
                                      "not ~S", n + 1, p)
        return p

    def governor(self, cls):
        """Return the nearest enclosing directive of class cls, if any."""
        parent = self.parent
        while parent:
            if isinstance(parent, cls):
                return parent
            parent = parent.parent
        return None

class Delimiter(Directive):
    """A closing bracket: ~], ~}, ~> or ~)."""

class DelimitedDirective(Directive):
    """A bracketed group: the opening directive, its clauses split on ~;,
    and the closing directive.  The delimiter class attribute names the
    closer's class; once parsed, the instance attribute holds the closer."""

    delimiter = None

    def __init__(self, *args):
        super(DelimitedDirective, self).__init__(*args)
        self.clauses = [[]]
        self.separators = []

    @property
    def terminated(self):
        return isinstance(self.delimiter, Directive)

    def append(self, x):
        if isinstance(x, Separator):
            self.separators.append(x)
            self.clauses.append([])
        elif isinstance(x, type(self).delimiter):
            self.delimiter = x
            self.delimited()
        else:
            self.clauses[len(self.separators)].append(x)
        self.end = x.end if isinstance(x, Directive) else (self.end + len(x))

    def delimited(self):
        """Validate the clause structure once the closer has been seen."""
        self.need_charpos = self.need_charpos or \
            any([x.need_charpos \
                     for c in self.clauses \
                     for x in c \
                     if isinstance(x, Directive)])

# Basic Output

control_char_names = ("nul soh stx etx eot enq ack bel bs ht nl vt np cr so si "
                      "dle dc1 dc2 dc3 dc4 nak syn etb can em sub esc fs gs rs "
                      "us").split()

def caret_notation(char):
    code = ord(char)
    if (code < 32 and char not in "\t\n") or code == 127:
        return "^" + chr(code ^ 0x40)
    return char

def char_name(char):
    code = ord(char)
    if code < 32:
        return control_char_names[code]
    elif code == 127:
        return "del"
    return unicodedata.name(char, "U+%04X" % code)

@register_directive("C")
class Character(Directive):
    """~C prints a character, with non-printing control characters in caret
    notation; ~:C spells out the names of non-printing characters; ~@C
    prints a Python character literal."""

    modifiers_allowed = Modifiers.all

    def format(self, stream, args):
        char = args.next()
        if not (isinstance(char, str) and len(char) == 1):
            raise InvalidArgumentType("expected a single character, not ~S",
                                      char)
        if self.colon:
            printing = char.isprintable() and not char.isspace()
            stream.write(char if printing else char_name(char))
        elif self.atsign:
            stream.write(repr(char))
        else:
            stream.write(caret_notation(char))

class ConstantChar(Directive):
    """~%, ~| and ~~ repeat one character.  With a literal count (or none)
    the parser gets a plain string back instead of a directive."""

    modifiers_allowed = None
    parameters_allowed = 1

    def __new__(cls, params, colon, atsign, *args):
        if colon or atsign:
            raise FormatError("neither colon nor at-sign allowed "
                              "for this directive")
        if len(params) > cls.parameters_allowed:
            raise FormatError("no more than one parameter allowed "
                              "for this directive")
        if not params or params[0] is None:
            return cls.character
        elif is_integer(params[0]):
            return cls.character * params[0]
        else:
            return super(ConstantChar, cls).__new__(cls)

    def format(self, stream, args):
        stream.write(self.character * self.int_param(0, args, 1))

@register_directive("%")
class Newline(ConstantChar):
    character = "\n"

@register_directive("&")
class FreshLine(Directive):
    parameters_allowed = 1
    need_charpos = True

    def format(self, stream, args):
        n = self.int_param(0, args, 1)
        if n > 0:
            stream.fresh_line()
            n -= 1
            while n > 0:
                stream.terpri()
                n -= 1

@register_directive("|")
class Page(ConstantChar):
    character = "\f"

@register_directive("~")
class Tilde(ConstantChar):
    character = "~"

# Radix Control

class Numeric(Directive):
    """~D, ~B, ~O, ~X and ~nR: an integer in a fixed or given radix."""

    modifiers_allowed = Modifiers.all
    parameters_allowed = 4

    def integer(self, args):
        n = args.next()
        if not is_integer(n):
            raise InvalidArgumentType("expected an integer, not ~S", n)
        return n

    def format(self, stream, args):
        config = args.config
        i = 0
        if self.radix:
            radix = self.radix
        else:
            radix = self.int_param(0, args, 10); i += 1
            if radix < 2 or radix > 36:
                raise InvalidArgumentType("radix ~D is not between 2 and 36",
                                          radix)
        mincol = self.int_param(i, args, 0); i += 1
        padchar = self.char_param(i, args, config.padchar); i += 1
        commachar = self.char_param(i, args, config.commachar); i += 1
        comma_interval = self.int_param(i, args, config.comma_interval); i += 1

        n = self.integer(args)
        s = self.convert(abs(n), radix)
        sign = ("+" if n >= 0 else "-") if self.atsign else \
               ("-" if n < 0 else "")
        if self.colon:
            if comma_interval < 1:
                raise InvalidArgumentType("comma interval must be positive, "
                                          "not ~D", comma_interval)
            if padchar == "0" and mincol > len(s) + len(sign):
                # Zero padding is grouped like the digits it extends: take
                # the widest digit run whose grouped form fits in mincol,
                # and let a space make up any column left over.
                def col(n):
                    return n + (n-1)//comma_interval + len(sign)
                width = len(s)
                while col(width + 1) <= mincol:
                    width += 1
                s = s.rjust(width, padchar)
                padchar = " "

            s = commafy(s, commachar, comma_interval)
        stream.write((sign + s).rjust(mincol, padchar))

@register_directive("R")
class Radix(Numeric):
    parameters_allowed = 5
    radix = None

    def __init__(self, *args):
        super(Radix, self).__init__(*args)
        if not self.params:
            self.format = self.old_roman if self.colon and self.atsign \
                                         else self.roman if self.atsign \
                                         else self.ordinal if self.colon \
                                         else self.cardinal

    def convert(self, n, radix):
        return "".join(convert(n, radix))

    def roman_numeral(self, args, oldstyle):
        n = self.integer(args)
        try:
            s = "".join(roman_int(n, oldstyle))
        except ValueError:
            raise InvalidArgumentType("~D cannot be expressed as ~:[~;old-style "
                                      "~]Roman numerals", n, oldstyle)
        return s

    def roman(self, stream, args):
        s = self.roman_numeral(args, False)
        stream.write(s if args.config.uppercase_roman else s.lower())

    def old_roman(self, stream, args):
        stream.write(self.roman_numeral(args, True))

    def ordinal(self, stream, args):
        stream.write(ordinal(self.integer(args)))

    def cardinal(self, stream, args):
        stream.write(cardinal(self.integer(args)))

@register_directive("D")
class Decimal(Numeric):
    radix = 10
    def convert(self, n, radix):
        return "%d" % n

@register_directive("B")
class Binary(Numeric):
    radix = 2
    def convert(self, n, radix):
        return bin(n)[2:]

@register_directive("O")
class Octal(Numeric):
    radix = 8
    def convert(self, n, radix):
        return "%o" % n

@register_directive("X")
class Hexadecimal(Numeric):
    radix = 16
    def convert(self, n, radix):
        return "%X" % n

# Floating-Point Printers

@register_directive("F")
class FixedFloat(Directive):
    modifiers_allowed = Modifiers.atsign
    parameters_allowed = 5

    def format(self, stream, args):
        w = self.int_param(0, args)
        d = self.int_param(1, args)
        k = self.int_param(2, args, 0)
        overflowchar = self.char_param(3, args)
        padchar = self.char_param(4, args, args.config.padchar)
        if d is not None and d < 0:
            raise InvalidArgumentType("digit count must not be negative, "
                                      "not ~D", d)

        arg = args.next()
        if is_integer(arg):
            x = decimal.Decimal(arg)
        elif isinstance(arg, float):
            if arg != arg or arg in (float("inf"), float("-inf")):
                raise InvalidArgumentType("cannot print ~S in fixed format",
                                          arg)
            x = decimal.Decimal(repr(arg))
        else:
            raise InvalidArgumentType("expected a number, not ~S", arg)

        x = x.scaleb(k)
        sign = "-" if x.is_signed() and x else "+" if self.atsign else ""
        x = abs(x)
        if d is None and w is not None:
            # as many fraction digits as will fit
            d = max(w - len(sign) - len("%d" % int(x)) - 1, 0)
        if d is None:
            s = "{:f}".format(x)
            if "." not in s:
                s += ".0"
        else:
            with decimal.localcontext() as context:
                context.prec = max(context.prec, x.adjusted() + d + 2)
                s = "{:f}".format(x.quantize(decimal.Decimal(1).scaleb(-d),
                                             rounding=decimal.ROUND_HALF_UP))
            if d == 0:
                s += "."

        if w is not None and len(sign) + len(s) > w:
            if s.startswith("0."):
                s = s[1:]
            if len(sign) + len(s) > w and overflowchar:
                stream.write(overflowchar * w)
                return
        stream.write((sign + s).rjust(w or 0, padchar))

# Printer Operations

def aesthetic(obj):
    """Render obj for human readers: strings without quotes, lists and
    tuples with their elements rendered the same way."""
    if isinstance(obj, str):
        return obj
    elif isinstance(obj, list):
        return "[%s]" % ", ".join(aesthetic(x) for x in obj)
    elif isinstance(obj, tuple):
        if len(obj) == 1:
            return "(%s,)" % aesthetic(obj[0])
        return "(%s)" % ", ".join(aesthetic(x) for x in obj)
    elif obj is None or isinstance(obj, (bool, int, float)):
        return str(obj)
    raise InvalidArgumentType("cannot print ~A object", type(obj).__name__)

def standard(obj):
    """Render obj in Python syntax."""
    if isinstance(obj, (list, tuple)):
        aesthetic(obj)  # type check only
        return repr(obj)
    elif obj is None or isinstance(obj, (str, bool, int, float)):
        return repr(obj)
    raise InvalidArgumentType("cannot print ~A object", type(obj).__name__)

def pad(s, mincol, colinc, minpad, padchar, left):
    """Pad s with at least minpad copies of padchar, then colinc more at a
    time until it is at least mincol characters long."""
    if colinc < 1:
        raise InvalidArgumentType("colinc must be positive, not ~D", colinc)
    n = max(minpad, 0)
    while len(s) + n < mincol:
        n += colinc
    return padchar * n + s if left else s + padchar * n

class Padded(Directive):
    modifiers_allowed = Modifiers.all
    parameters_allowed = 4

    def format(self, stream, args):
        mincol = self.int_param(0, args, 0)
        colinc = self.int_param(1, args, 1)
        minpad = self.int_param(2, args, 0)
        padchar = self.char_param(3, args, args.config.padchar)

        arg = args.next()
        s = "[]" if self.colon and arg is None else self.render(arg)
        stream.write(pad(s, mincol, colinc, minpad, padchar, self.atsign))

@register_directive("A")
class Aesthetic(Padded):
    render = staticmethod(aesthetic)

@register_directive("S")
class Standard(Padded):
    render = staticmethod(standard)

# Layout Control

def ceiling(a, b):
    q, r = divmod(a, b)
    return (q + 1) if r else q

@register_directive("T")
class Tabulate(Directive):
    modifiers_allowed = Modifiers.atsign
    parameters_allowed = 3
    need_charpos = True

    def format(self, stream, args):
        cur = stream.charpos
        if self.atsign:
            # relative tabulation
            colrel = self.int_param(0, args, 1)
            colinc = self.int_param(1, args, 1)
            n = colinc * ceiling(cur + colrel, colinc) - cur if colinc > 0 \
                                                             else colrel
        else:
            # absolute tabulation
            colnum = self.int_param(0, args, 1)
            colinc = self.int_param(1, args, 1)
            if cur < colnum:
                n = colnum - cur
            elif colinc > 0:
                n = colinc - ((cur - colnum) % colinc)
            else:
                n = 0
        padchar = self.char_param(2, args, args.config.padchar)
        stream.fill(n, padchar)

@register_directive(">")
class EndJustification(Delimiter):
    modifiers_allowed = Modifiers.colon

def justify(segments, mincol, colinc, minpad, padchar, before, after):
    """Join the segments, distributing padding between them (and before the
    first or after the last, if requested) so that the result is mincol
    characters long, or longer by a multiple of colinc."""
    if not segments:
        segments = [""]
    if len(segments) == 1 and not (before or after):
        before = True
    gaps = len(segments) - 1 + before + after
    chars = sum(len(s) for s in segments)
    width = mincol
    if chars + gaps * minpad > mincol:
        width += max(colinc, 1) * ceiling(chars + gaps * minpad - mincol,
                                          max(colinc, 1))
    q, r = divmod(width - chars, gaps)
    fill = [padchar * (q + 1 if i < r else q) for i in range(gaps)]

    parts = []
    if before:
        parts.append(fill.pop(0))
    for i, s in enumerate(segments):
        if i > 0:
            parts.append(fill.pop(0))
        parts.append(s)
    if after:
        parts.append(fill.pop(0))
    return "".join(parts)

@register_directive("<")
class Justification(DelimitedDirective):
    modifiers_allowed = Modifiers.all
    parameters_allowed = 4
    delimiter = EndJustification
    need_charpos = True

    def delimited(self):
        if self.delimiter.colon:
            raise FormatError("logical blocks (~~<...~~:>) are not supported")
        super(Justification, self).delimited()
        if any(s.colon for s in self.separators[1:]):
            raise FormatError("only the first ~~; may have a colon")
        self.overflow = self.separators[0] \
            if self.separators and self.separators[0].colon else None

    def render(self, clause, args):
        substream = CharposStream(StringIO())
        apply_directives(substream, clause, args)
        return substream.getvalue()

    def format(self, stream, args):
        mincol = self.int_param(0, args, 0)
        colinc = self.int_param(1, args, 1)
        minpad = self.int_param(2, args, 0)
        padchar = self.char_param(3, args, args.config.padchar)

        # A ~^ abandons the segment it appears in; the segments completed
        # before it are still justified.
        segments = []
        try:
            for clause in self.clauses:
                segments.append(self.render(clause, args))
        except UpAndOut:
            pass

        prefix = None
        if self.overflow:
            if not segments:
                return
            prefix = segments.pop(0)
        text = justify(segments, mincol, colinc, minpad, padchar,
                       self.colon, self.atsign)
        if prefix is not None:
            spare = self.overflow.int_param(0, args, 0)
            width = self.overflow.int_param(1, args, args.config.line_length)
            if width is None:
                width = stream.output_width
            if stream.charpos + len(text) + spare > width:
                stream.write(prefix)
        stream.write(text)

# Control-Flow Operations

@register_directive("*")
class GoTo(Directive):
    modifiers_allowed = Modifiers.either
    parameters_allowed = 1

    def format(self, stream, args):
        if self.atsign:
            args.goto(self.int_param(0, args, 0))
        else:
            n = self.int_param(0, args, 1)
            args.jump(-n if self.colon else n)

@register_directive("]")
class EndConditional(Delimiter):
    pass

@register_directive("[")
class Conditional(DelimitedDirective):
    modifiers_allowed = Modifiers.either
    parameters_allowed = 1
    delimiter = EndConditional

    def delimited(self):
        super(Conditional, self).delimited()

        self.default = None
        if self.colon:
            if len(self.clauses) != 2:
                raise FormatError("must specify exactly two sections")
        elif self.atsign:
            if len(self.clauses) != 1:
                raise FormatError("can only specify one section")
        else:
            if len(self.separators) > 1 and \
                    any([s.colon for s in self.separators[0:-1]]):
                raise FormatError("only the last ~~; may have a colon")
            if self.separators and self.separators[-1].colon:
                # ~:; before the last clause makes it the default
                self.default = self.clauses[-1]

    def select(self, n):
        if not is_integer(n):
            raise InvalidArgumentType("clause selector must be an integer, "
                                      "not ~S", n)
        nclauses = len(self.clauses) - (1 if self.default is not None else 0)
        if n < 0 or n >= nclauses:
            raise SelectorOutOfRange(n, nclauses)
        return self.clauses[n]

    def format(self, stream, args):
        if self.colon:
            # ~:[false~;true~]
            apply_directives(stream, self.clauses[1 if args.next() else 0], args)
        elif self.atsign:
            # ~@[...~] leaves a true argument for the clause to use
            if args.peek():
                apply_directives(stream, self.clauses[0], args)
            else:
                args.next()
        else:
            n = self.param(0, args)
            if n is None: n = args.next()
            try:
                clause = self.select(n)
            except SelectorOutOfRange as e:
                if self.default is None:
                    logger.debug("%s: no clause for %d", self, e.selector)
                    return
                clause = self.default
            apply_directives(stream, clause, args)

@register_directive("}")
class EndIteration(Delimiter):
    modifiers_allowed = Modifiers.colon

@register_directive("{")
class Iteration(DelimitedDirective):
    modifiers_allowed = Modifiers.all
    parameters_allowed = 1
    delimiter = EndIteration

    def append(self, x):
        if isinstance(x, Separator):
            raise FormatError("~~; not permitted in ~~{...~~}")
        super(Iteration, self).append(x)

    def delimited(self):
        body = self.clauses[0]
        self.need_charpos = not body or \
            any([x.need_charpos for x in body if isinstance(x, Directive)])
        self.prepared = body and prepare_directives(body)

    def format(self, stream, args):
        max = self.int_param(0, args, -1)
        if self.prepared:
            body = self.prepared
        else:
            control = args.next()
            if not isinstance(control, str):
                raise InvalidArgumentType("expected a control string, not ~S",
                                          control)
            body = prepare_directives(parse_control_string(control,
                                                           enclosing=self))

        args = args if self.atsign else args.nested(args.next())
        next = (lambda args: args.nested(args.next(), args)) if self.colon \
                                                             else None
        write = stream.write
        i = 0
        starts = set()
        while not args.empty or (i == 0 and self.delimiter.colon):
            if i == max: break
            if max < 0:
                # A pass depends only on the position it starts from, so a
                # repeated start means the passes would cycle forever.
                if args.cur in starts: break
                starts.add(args.cur)
            i += 1
            iargs = args
            try:
                iargs = next(args) if next else args
                fast_apply_directives(stream, write, body, iargs)
            except UpAndOut:
                pass
            except UpUpAndOut:
                break
            except ArgumentExhausted as e:
                if e.arguments is not args and e.arguments is not iargs:
                    raise
                logger.debug("%s: arguments exhausted after %d iteration(s)",
                             self, i)
                break

@register_directive("?")
class Recursive(Directive):
    modifiers_allowed = Modifiers.atsign
    need_charpos = True

    def format(self, stream, args):
        control = args.next()
        if not isinstance(control, str):
            raise InvalidArgumentType("expected a control string, not ~S",
                                      control)
        directives = tuple(parse_control_string(control))
        try:
            apply_directives(stream, directives,
                             args if self.atsign else args.nested(args.next()))
        except UpAndOut:
            pass

# Miscellaneous Operations

@register_directive(")")
class EndCaseConversion(Delimiter):
    pass

first_word = re.compile(r"[^\W_]")

def capitalize(s):
    """Lowercase s, then capitalize its first word."""
    return first_word.sub(lambda m: m.group().upper(), s.lower(), 1)

@register_directive("(")
class CaseConversion(DelimitedDirective):
    modifiers_allowed = Modifiers.all
    delimiter = EndCaseConversion

    def append(self, x):
        if isinstance(x, Separator):
            raise FormatError("~~; not permitted in ~~(...~~)")
        super(CaseConversion, self).append(x)

    def delimited(self):
        super(CaseConversion, self).delimited()
        self.body = self.clauses[0]

    def format(self, stream, args):
        substream = CharposStream.wrap(stream).substream()
        try:
            apply_directives(substream, self.body, args)
        finally:
            s = substream.getvalue()
            stream.write(s.upper() if self.colon and self.atsign \
                                   else s.title() if self.colon \
                                   else capitalize(s) if self.atsign \
                                   else s.lower())

@register_directive("P")
class Plural(Directive):
    modifiers_allowed = Modifiers.all

    def __init__(self, *args):
        def prev(args):
            if args.cur == 0:
                raise ArgumentExhausted(args)
            return args.peek(-1)
        def next(args): return args.next()
        def y(arg): return "y" if arg == 1 else "ies"
        def s(arg): return "" if arg == 1 else "s"

        super(Plural, self).__init__(*args)
        self.arg = prev if self.colon else next
        self.suffix = y if self.atsign else s

    def format(self, stream, args):
        arg = self.arg(args)
        if not (is_integer(arg) or isinstance(arg, float)):
            raise InvalidArgumentType("expected a number, not ~S", arg)
        stream.write(self.suffix(arg))

# Miscellaneous Pseudo-Operations

@register_directive(";")
class Separator(Directive):
    modifiers_allowed = Modifiers.colon
    parameters_allowed = 2

@register_directive("^")
class Escape(Directive):
    modifiers_allowed = Modifiers.colon
    parameters_allowed = 3

    def __init__(self, *args):
        super(Escape, self).__init__(*args)

        if self.colon:
            iteration = self.governor(Iteration)
            if not (iteration and iteration.colon):
                raise FormatError("can't have ~~:^ outside of a "
                                  "~~:{...~~} construct")
        self.exception = UpUpAndOut if self.colon else UpAndOut

        if len(self.params) == 0:
            self.format = self.check_remaining_outer if self.colon \
                                                     else self.check_remaining
        else:
            self.format = self.check_params

    def check_remaining(self, stream, args):
        if args.empty:
            raise UpAndOut()

    def check_remaining_outer(self, stream, args):
        if args.outer.empty:
            raise UpUpAndOut()

    def check_params(self, stream, args):
        params = [self.param(i, args) for i in range(len(self.params))]
        if None in params:
            raise InvalidArgumentType("~~^ parameters may not be omitted")
        if len(params) == 1:
            done = params[0] == 0
        elif len(params) == 2:
            done = params[0] == params[1]
        else:
            done = params[0] <= params[1] <= params[2]
        if done:
            raise self.exception()

parameter_chars = frozenset("+-0123456789'Vv#,")

def parse_control_string(control, start=0, parent=None, enclosing=None):
    """Parse control from start, yielding literal strings and Directive
    instances.  With a parent, stop after yielding the parent's closer.
    An enclosing directive becomes the parent of the top-level directives
    without opening a group, so stray closers and separators are still
    rejected."""

    assert isinstance(control, str), "control string must be a string"
    assert start >= 0, "can't start parsing from end"

    i = start
    end = len(control)
    while i < end:
        tilde = control.find("~", i)
        if tilde == -1:
            yield control[i:end]
            break
        elif tilde > i:
            yield control[i:tilde]
        i = tilde + 1

        params = []
        while i < end:
            char = control[i]
            if char in "+-0123456789":
                # numeric parameter
                mark = i
                i += 1
                while i < end and control[i] in "0123456789":
                    i += 1
                if not control[mark:i].lstrip("+-"):
                    raise MalformedDirective(control, tilde,
                                             "sign without digits")
                params.append(int(control[mark:i]))
            elif char == "'":
                # character parameter
                if i + 1 >= end:
                    raise MalformedDirective(control, tilde,
                                             "unterminated character "
                                             "parameter")
                params.append(control[i+1])
                i += 2
            elif char in "Vv":
                params.append(Directive.variable_parameter)
                i += 1
            elif char == "#":
                params.append(Directive.remaining_parameter)
                i += 1
            elif char == ",":
                # empty parameter
                params.append(None)
            else:
                break

            if i < end and control[i] == ",":
                i += 1
                if i >= end or control[i] not in parameter_chars:
                    raise MalformedDirective(control, tilde,
                                             "missing parameter after comma")
            else:
                break

        colon = atsign = False
        while i < end:
            if control[i] == ":":
                if colon:
                    raise MalformedDirective(control, tilde, "too many colons")
                colon = True
            elif control[i] == "@":
                if atsign:
                    raise MalformedDirective(control, tilde,
                                             "too many at-signs")
                atsign = True
            else:
                break
            i += 1

        if i >= end:
            raise MalformedDirective(control, tilde, "unterminated directive")
        char = control[i]
        i += 1
        try:
            cls = format_directives[char]
        except KeyError:
            raise MalformedDirective(control, tilde,
                                     "unknown format directive")
        try:
            d = cls(params, colon, atsign, control, tilde, i,
                    parent or enclosing)
        except FormatError as e:
            raise MalformedDirective(control, tilde, e.control, *e.args)

        if isinstance(d, Delimiter):
            if not (parent and isinstance(d, type(parent).delimiter)):
                raise MalformedDirective(control, tilde,
                                         "unmatched closing directive")
        elif isinstance(d, Separator) and parent is None:
            raise MalformedDirective(control, tilde,
                                     "~~; outside of a bracketed group")
        elif isinstance(d, DelimitedDirective):
            for x in parse_control_string(control, i, d):
                try:
                    d.append(x)
                except FormatError as e:
                    position = x.start if isinstance(x, Directive) else tilde
                    raise MalformedDirective(control, position,
                                             e.control, *e.args)
            if not d.terminated:
                raise MalformedDirective(control, tilde,
                                         "unterminated ~~~A directive", char)
            i = d.end
        yield d
        if parent and d is parent.delimiter:
            return

class Formatter(object):
    """A parsed control string.  Instances are immutable, and may be applied
    any number of times, from any number of threads."""

    def __init__(self, control):
        if isinstance(control, str):
            self.directives = tuple(parse_control_string(control))
            logger.debug("parsed %r into %d directive(s)",
                         control, len(self.directives))
        elif isinstance(control, (tuple, list)):
            self.directives = tuple(control)
        else:
            raise TypeError("control must be a string or list of directives")
        self.need_charpos = any([x.need_charpos \
                                     for x in self.directives \
                                     if isinstance(x, Directive)])

    def __str__(self):
        return "".join(str(x) if isinstance(x, Directive) \
                              else x.replace("~", "~~")
                       for x in self.directives)

    def __call__(self, stream, *args, config=None):
        if self.need_charpos:
            stream = CharposStream.wrap(stream)
        if len(args) == 1 and isinstance(args[0], Arguments):
            args = args[0]
        else:
            args = Arguments(args, config=config)
        try:
            apply_directives(stream, self.directives, args)
        except UpAndOut:
            pass
        return args

def prepare_directives(directives):
    return [(x, True) if isinstance(x, str) else (x, False) \
                for x in directives]

def fast_apply_directives(stream, write, directives, args):
    for (x, string) in directives:
        if string:
            write(x)
        else:
            try:
                x.format(stream, args)
            except FormatRuntimeError as e:
                e.locate(x)
                raise

def apply_directives(stream, directives, args):
    write = stream.write
    for x in directives:
        if isinstance(x, str):
            write(x)
        else:
            try:
                x.format(stream, args)
            except FormatRuntimeError as e:
                e.locate(x)
                raise

def format(destination, control, *args, config=None):
    """Format args according to the control string, which may also be a
    Formatter.  If destination is None, the output is returned as a string;
    if it is True, it is written to standard output; otherwise it is written
    to destination, which should be a stream."""
    if destination is None:
        stream = StringIO()
    elif destination is True:
        stream = sys.stdout
    else:
        stream = destination
    f = control if isinstance(control, Formatter) else Formatter(control)
    f(stream, *args, config=config)
    if destination is None:
        str = stream.getvalue()
        stream.close()
        return str

english_list = Formatter("~#[~;~A~;~A and ~A~:;~@{~A~#[~;, and ~:;, ~]~}~]")

def join_english(items, config=None):
    """Join items into an English list: "", "x", "x and y", or
    "x, y, and z"."""
    return format(None, english_list, *items, config=config)
