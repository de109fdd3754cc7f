"""Number rendering for the radix-control directives: digits in an arbitrary
radix, digit grouping, English cardinals & ordinals, and Roman numerals."""

__all__ = ["convert", "commafy", "roman_int", "cardinal", "ordinal"]

digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

def convert(n, radix):
    """Yield the digits of the non-negative integer n in the given radix."""
    def le_digits(n, radix):
        while n > 0:
            yield digits[n % radix]
            n //= radix
    if radix < 2 or radix > 36:
        raise ValueError("radix out of range")
    if n == 0:
        return iter("0")
    return reversed(tuple(le_digits(n, radix)))

def commafy(s, commachar, comma_interval):
    """Add commachars between groups of comma_interval digits."""
    first = len(s) % comma_interval
    a = [s[0:first]] if first > 0 else []
    for i in range(first, len(s), comma_interval):
        a.append(s[i:i + comma_interval])
    return commachar.join(a)

roman_numerals = ["M", 2, "D", 5, "C", 2, "L", 5, "X", 2, "V", 5, "I"]

def roman_int(n, oldstyle=False):
    """Yield the Roman numeral representation of n.  This routine is a
    straightforward translation of the code from section 69 of TeX82, where
    it is prefaced by the following comment:

        Readers who like puzzles might enjoy trying to figure out how
        this tricky code works; therefore no explanation will be given.
        Notice that 1990 yields MCMXC, not MXM.

    The only substantive change to the algorithm is the addition of the
    old-style flag."""
    if n < 1 or n > (4999 if oldstyle else 3999):
        raise ValueError("integer cannot be expressed as Roman numerals")

    # j & k are mysterious indices into roman_numerals;
    # u & v are mysterious numbers
    j = 0; v = 1000
    while True:
        while n >= v:
            yield roman_numerals[j]; n -= v
        if n <= 0: return   # nonpositive input produces no output
        k = j + 2; u = v // roman_numerals[k - 1]
        if roman_numerals[k - 1] == 2:
            k += 2; u //= roman_numerals[k - 1]
        if n + u >= v and not oldstyle:
            yield roman_numerals[k]; n += u
        else:
            j += 2; v //= roman_numerals[j - 1]

# English names.  Groups of three digits are named separately and joined
# with commas, most significant first.

cardinals = ["zero", "one", "two" , "three", "four",
             "five", "six", "seven", "eight", "nine",
             "ten", "eleven", "twelve", "thirteen", "fourteen",
             "fifteen", "sixteen", "seventeen", "eighteen", "nineteen"]

ordinals = ["zeroth", "first", "second", "third", "fourth",
            "fifth", "sixth", "seventh", "eighth", "ninth",
            "tenth", "eleventh", "twelfth", "thirteenth", "fourteenth",
            "fifteenth", "sixteenth", "seventeenth", "eighteenth", "nineteenth"]

tenstems = ["", "ten", "twent", "thirt", "fort", "fift",
            "sixt", "sevent", "eight", "ninet"]

ten_cubes = ["", "thousand", "million", "billion", "trillion",
             "quadrillion", "quintillion", "sextillion", "septillion",
             "octillion", "nonillion", "decillion", "undecillion",
             "duodecillion", "tredecillion", "quattuordecillion",
             "quindecillion", "sexdecillion", "septendecillion",
             "octodecillion", "novemdecillion", "vigintillion"]

def small_english(n, ordinal):
    """Name 0 <= n < 1000."""
    if n >= 100:
        s = cardinals[n // 100] + " hundred"
        n %= 100
        if n == 0:
            return s + "th" if ordinal else s
        return s + " " + small_english(n, ordinal)
    table = ordinals if ordinal else cardinals
    if n < 20:
        return table[n]
    tens, ones = divmod(n, 10)
    if ones == 0:
        return tenstems[tens] + ("ieth" if ordinal else "y")
    return tenstems[tens] + "y-" + table[ones]

def ordinal_suffix(n):
    if n % 100 in (11, 12, 13):
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")

def english(n, ordinal=False):
    """Return the English name of the integer n.  Numbers too large for
    the table of scale words are written as grouped digits instead."""
    if n < 0:
        return "negative " + english(-n, ordinal)
    if n == 0:
        return ordinals[0] if ordinal else cardinals[0]

    groups = []
    m = n
    while m > 0:
        m, group = divmod(m, 1000)
        groups.append(group)
    if len(groups) > len(ten_cubes):
        s = commafy(str(n), ",", 3)
        return s + ordinal_suffix(n) if ordinal else s

    # Only the least significant nonzero group takes the ordinal form.
    last = min(v for v in range(len(groups)) if groups[v])
    words = []
    for v in range(len(groups) - 1, -1, -1):
        if groups[v] == 0:
            continue
        if v == 0:
            words.append(small_english(groups[v], ordinal))
        else:
            words.append(small_english(groups[v], False) + " " + ten_cubes[v] +
                         ("th" if ordinal and v == last else ""))
    return ", ".join(words)

def ordinal(n):
    return english(n, True)

def cardinal(n):
    return english(n, False)
