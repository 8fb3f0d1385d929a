"""Sentence templates, noun cards and image prompt formatting."""

import logging
import random
import re
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

BLANK = '_______'

SENTENCE_TEMPLATES = [
    f'A wild {BLANK} appeared!',
    f'{BLANK} meets {BLANK} in an epic battle!',
    f'The legendary {BLANK} of destiny.',
    f'{BLANK} discovers a secret {BLANK} in the attic.',
    f'Once upon a time, there was a {BLANK}.',
    f'{BLANK} and {BLANK} go on an adventure.',
    f'The mysterious case of the stolen {BLANK}.',
    f'A {BLANK} walks into a bar with a {BLANK}.',
    f'The amazing {BLANK} show!',
    f'{BLANK} vs {BLANK}, the ultimate showdown!',
]

NOUN_CARDS = [
    'unicorn', 'dragon', 'pizza', 'rocket', 'robot', 'dinosaur',
    'rainbow', 'ninja', 'pirate', 'wizard', 'zombie', 'vampire',
    'alien', 'ghost', 'monster', 'superhero', 'princess', 'knight',
    'astronaut', 'detective', 'cowboy', 'mermaid', 'fairy', 'witch',
    'banana', 'kitten', 'puppy', 'elephant', 'giraffe', 'penguin',
    'spaceship', 'castle', 'treasure', 'sword', 'crown', 'wand',
    'potion', 'crystal', 'portal', 'time machine', 'laser', 'jetpack',
    'volcano', 'beach', 'mountain', 'forest', 'desert', 'ocean',
    'thunder', 'lightning', 'tornado', 'earthquake', 'meteor', 'comet',
    'chocolate', 'cupcake', 'donut', 'ice cream', 'candy', 'cookie',
    'taco', 'burrito', 'pancake', 'waffle', 'spaghetti', 'hot dog',
    'pickle', 'cheese wheel', 'watermelon', 'pineapple', 'avocado', 'popcorn',
    'octopus', 'shark', 'dolphin', 'whale', 'flamingo', 'llama',
    'sloth', 'koala', 'kangaroo', 'hamster', 'goldfish', 'parrot',
    'owl', 'raccoon', 'hedgehog', 'gorilla', 'panda', 'crocodile',
    'snail', 'butterfly', 'bumblebee', 'ladybug', 'frog', 'turtle',
    'chef', 'clown', 'magician', 'lifeguard', 'librarian', 'firefighter',
    'mad scientist', 'rock star', 'ballerina', 'sumo wrestler', 'grandma', 'toddler',
    'mime', 'lumberjack', 'mailman', 'king', 'queen', 'jester',
    'skateboard', 'bicycle', 'submarine', 'hot air balloon', 'tractor', 'monster truck',
    'bulldozer', 'gondola', 'roller coaster', 'trampoline', 'hammock', 'bathtub',
    'umbrella', 'toaster', 'vacuum cleaner', 'rubber duck', 'disco ball', 'lava lamp',
    'accordion', 'tuba', 'bagpipes', 'drum kit', 'karaoke machine', 'banjo',
    'snowman', 'sandcastle', 'igloo', 'treehouse', 'lighthouse', 'haunted house',
    'pyramid', 'skyscraper', 'waterfall', 'glacier', 'swamp', 'jungle',
    'moon', 'black hole', 'galaxy', 'satellite', 'UFO', 'asteroid',
    'birthday cake', 'wedding', 'pillow fight', 'snowball', 'tea party', 'yoga class',
    'bubble bath', 'garden gnome', 'scarecrow', 'teddy bear', 'yo-yo', 'kite',
]

ART_STYLES = {
    'realistic': 'realistic photography, natural lighting, candid moment',
    'cartoon': 'colorful cartoon illustration, exaggerated expressions',
    'cinematic': 'wide shot, dramatic lighting, frozen motion',
    'whimsical': "children's book illustration, soft colors",
}
DEFAULT_ART_STYLE = 'realistic'

PROMPT_TEMPLATE = (
    'Create a clear, detailed image that literally depicts the following scene '
    'as a single moment in time:\n\n"{sentence}"\n\n'
    'The scene should be visually understandable without text, showing the key '
    'subjects, actions and surroundings implied by the sentence. The image should '
    'be family-friendly, humorous and slightly exaggerated for clarity.'
)


def count_blanks(template: Optional[str]) -> int:
    if not template:
        return 0
    return template.count(BLANK)


def draw_template(templates: Sequence[str] = SENTENCE_TEMPLATES, rng=random) -> Tuple[str, int]:
    template = rng.choice(list(templates))
    return template, count_blanks(template)


def normalize_art_style(style: Optional[str]) -> str:
    if style and style in ART_STYLES:
        return style
    if style:
        logger.warning(f"[prompt] unknown art style={style!r}, using {DEFAULT_ART_STYLE}")
    return DEFAULT_ART_STYLE


def _sanitize(text: str) -> str:
    text = re.sub(r'[“”]', '"', text)
    text = re.sub(r'[‘’]', "'", text)
    return re.sub(r'\s+', ' ', text).strip()


def complete_sentence(template: str, cards: Sequence[str]) -> str:
    """Fill blanks left to right."""
    blanks = count_blanks(template)
    if blanks == 0:
        raise ValueError('sentence template has no blanks')
    if len(cards) < blanks:
        raise ValueError(f'template has {blanks} blanks but only {len(cards)} cards were given')
    sentence = template
    for card in cards[:blanks]:
        sentence = sentence.replace(BLANK, card, 1)
    return _sanitize(sentence)


def format_image_prompt(template: str, cards: Sequence[str], art_style: Optional[str] = None,
                        max_chars: int = 1000) -> Tuple[str, str, str]:
    """Return ``(prompt, completed_sentence, art_style)``."""
    style = normalize_art_style(art_style)
    sentence = complete_sentence(template, cards)
    prompt = f"{PROMPT_TEMPLATE.format(sentence=sentence)}\n\nStyle: {ART_STYLES[style]}"
    if len(prompt) > max_chars:
        prompt = prompt[:max_chars]
    return prompt, sentence, style


class CardDeck:
    """Shuffled noun-card supply with a discard pile."""

    def __init__(self, cards: Sequence[str] = NOUN_CARDS, rng=None):
        self._rng = rng or random.Random()
        self._cards = list(cards)
        self.draw_pile: List[str] = []
        self.discard_pile: List[str] = []
        self.shuffle()

    def shuffle(self) -> None:
        self.draw_pile = list(self._cards)
        self._rng.shuffle(self.draw_pile)
        self.discard_pile = []

    def _reshuffle_discards(self) -> None:
        if not self.discard_pile:
            return
        self.draw_pile = self.discard_pile
        self.discard_pile = []
        self._rng.shuffle(self.draw_pile)

    def draw(self, count: int) -> List[str]:
        drawn = []
        for _ in range(count):
            if not self.draw_pile:
                self._reshuffle_discards()
            if not self.draw_pile:
                break
            drawn.append(self.draw_pile.pop())
        return drawn

    def refill(self, hand: List[str], size: int) -> List[str]:
        missing = size - len(hand)
        if missing <= 0:
            return hand
        return hand + self.draw(missing)

    def discard(self, cards: Sequence[str]) -> None:
        self.discard_pile.extend(cards)

    @property
    def remaining(self) -> int:
        return len(self.draw_pile) + len(self.discard_pile)
