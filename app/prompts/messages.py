from typing import List, Optional
from app.schemas.conversation_schemas import SearchResult
from app.schemas.order_schemas import Appointment, CartItem, Clinic, Courier, Order, Pharmacy
from app.services.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    NoCourierAvailable,
    NoPendingPrescription,
    NotAuthorized,
    OrderRuleViolation,
    OutsideServiceZone,
    PharmacyMismatch,
    PrescriptionRequired,
    UnknownMedicine,
)


def fcfa(amount: int) -> str:
    return f"{amount} FCFA"


# Menu and small talk

def welcome(support_phone: str) -> str:
    return (
        "👋 *BIENVENUE CHEZ PILLBOX SAN PEDRO !*\n\n"
        "Je suis Mia, votre assistante médicale.\n\n"
        "💊 *Commander des médicaments :*\n"
        '1. Écrivez le nom d\'un médicament, ex: "paracétamol"\n'
        '2. Ajoutez-le au panier, ex: "ajouter 1 2"\n'
        '3. Dites "continuer" ou "terminer"\n\n'
        "⚠️ *Médicaments sur ordonnance :* envoyez la photo de l'ordonnance, la pharmacie la valide.\n\n"
        '📅 *Rendez-vous :* dites "rendez-vous"\n'
        '🏥 *Pharmacie de garde :* dites "pharmacie de garde"\n'
        '🏥 *Cliniques :* dites "cliniques disponibles"\n\n'
        f"📞 *Support :* {support_phone}\n"
        "📍 Service uniquement à San Pedro"
    )


def menu_prompt() -> str:
    return "Comment puis-je vous aider ? 😊"


def greeting() -> str:
    return "👋 Bonjour ! Je suis Mia, votre assistante médicale à San Pedro. Comment puis-je vous aider ?"


def thanks() -> str:
    return "Je vous en prie ! 😊 N'hésitez pas si vous avez besoin d'autre chose."


def support_contact(support_phone: str) -> str:
    return f"📞 *Support :* {support_phone}"


def cancelled() -> str:
    return "↩️ Retour au menu principal. Que souhaitez-vous faire ?"


def generic_apology(support_phone: str) -> str:
    return (
        "😔 Désolé, un problème technique est survenu.\n"
        f"Réessayez dans un instant ou contactez le support : {support_phone}"
    )


def advice_fallback(support_phone: str) -> str:
    return (
        "Je ne peux pas répondre à cette question pour le moment.\n\n"
        "• En cas d'urgence, rendez-vous à l'hôpital le plus proche\n"
        "• Pour un médicament, écrivez simplement son nom\n"
        f"• Pour parler à quelqu'un : {support_phone}"
    )


def unknown_button() -> str:
    return "❌ Cette option n'est pas reconnue. Retour au menu principal."


def stale_action() -> str:
    return "ℹ️ Cette demande n'est plus disponible."


def location_saved() -> str:
    return "📍 Position enregistrée. Elle servira pour votre prochaine livraison."


# Medicine search and cart

def ask_medicine_name() -> str:
    return '💊 Quel médicament cherchez-vous ? Écrivez son nom, ex: "paracétamol".'


def search_too_short() -> str:
    return "❌ Nom trop court (min 3 lettres)."


def search_not_found(term: str, support_phone: str) -> str:
    return (
        f'❌ *"{term}" NON DISPONIBLE*\n\n'
        "💡 *Alternatives :*\n"
        "• Vérifier l'orthographe\n"
        "• Essayer un nom générique\n"
        "• Envoyer une photo du médicament 📸\n\n"
        f"📞 *Support :* {support_phone}"
    )


def search_results(term: str, results: List[SearchResult], cart_size: int) -> str:
    lines = [f"💊 *{term.upper()}*", ""]
    for result in results:
        lines.append(f"{result.index}. *{result.name}*")
        lines.append(f"💰 {fcfa(result.price)}")
        lines.append(f"🏥 {result.pharmacy_name}")
        lines.append(f"📦 {result.stock} disponible(s)")
        if result.dosage or result.form:
            lines.append(f"💊 {result.dosage or ''} {result.form or ''}".rstrip())
        lines.append("⚠️ *ORDONNANCE REQUISE*" if result.requires_prescription else "✅ Sans ordonnance")
        lines.append("")
    lines.append('🛒 Pour ajouter : "commander [numéro] [quantité]", ex: "commander 1 2"')
    if cart_size:
        lines.append(f'Votre panier contient {cart_size} médicament(s). "panier" pour le voir, "terminer" pour finaliser.')
    return "\n".join(lines)


def no_search_results_yet() -> str:
    return "❌ Aucun médicament sélectionné. Cherchez d'abord un médicament."


def order_usage(support_phone: str) -> str:
    return (
        "💊 *COMMENT COMMANDER :*\n\n"
        '1️⃣ Écrivez le nom du médicament, ex: "paracétamol"\n'
        '2️⃣ Ajoutez au panier, ex: "commander 1 2"\n'
        '3️⃣ "continuer" pour ajouter un autre, "terminer" pour finaliser\n\n'
        f"📞 Support : {support_phone}"
    )


def cart_lines(cart: List[CartItem]) -> str:
    return "\n".join(
        f"• {item.medicine_name} x{item.quantity} = {fcfa(item.line_total)}" for item in cart
    )


def item_added(item: CartItem, cart: List[CartItem]) -> str:
    subtotal = sum(line.line_total for line in cart)
    return (
        f"✅ *{item.medicine_name}* ajouté au panier.\n\n"
        f"🛒 *Panier ({item.pharmacy_name}) :*\n{cart_lines(cart)}\n"
        f"Sous-total : {fcfa(subtotal)}\n\n"
        '"continuer" pour ajouter un autre médicament, "terminer" pour finaliser.'
    )


def cart_summary(cart: List[CartItem], pharmacy_name: Optional[str], fee: int) -> str:
    if not cart:
        return cart_empty()
    subtotal = sum(item.line_total for item in cart)
    return (
        f"🛒 *VOTRE PANIER* ({pharmacy_name})\n\n{cart_lines(cart)}\n\n"
        f"Sous-total : {fcfa(subtotal)}\n"
        f"Livraison : {fcfa(fee)}\n"
        f"*Total : {fcfa(subtotal + fee)}*\n\n"
        '"terminer" pour finaliser, "vider" pour vider le panier.'
    )


def cart_empty() -> str:
    return '🛒 Votre panier est vide. Écrivez le nom d\'un médicament pour commencer.'


def cart_cleared() -> str:
    return "🗑️ Panier vidé."


def continue_shopping() -> str:
    return "👍 Quel autre médicament voulez-vous ajouter ?"


def ask_delivery_location(cart: List[CartItem], fee: int) -> str:
    subtotal = sum(item.line_total for item in cart)
    return (
        f"📦 Total : {fcfa(subtotal + fee)} (dont livraison {fcfa(fee)})\n\n"
        "📍 Envoyez votre *position* (trombone 📎 > Position) pour la livraison."
    )


def prescription_instructions(medicine_name: str, support_phone: str) -> str:
    return (
        f"⚠️ *{medicine_name}* nécessite une ordonnance.\n\n"
        "📸 Envoyez maintenant une *photo lisible* de votre ordonnance.\n"
        "La pharmacie la vérifie puis le médicament est ajouté à votre panier.\n\n"
        f"📞 Support : {support_phone}"
    )


def photo_reminder() -> str:
    return '📸 J\'attends la photo de votre ordonnance. Dites "annuler" pour revenir au menu.'


def location_reminder() -> str:
    return '📍 J\'attends votre position pour la livraison (📎 > Position). Dites "annuler" pour revenir au menu.'


def prescription_needed_at_checkout(order_id: str) -> str:
    return (
        f"📋 Commande *{order_id}* enregistrée.\n"
        "📸 Elle contient un médicament sur ordonnance : envoyez la photo de l'ordonnance."
    )


def order_confirmed(order: Order) -> str:
    return (
        f"✅ *COMMANDE {order.id} CONFIRMÉE*\n\n"
        f"🏥 {order.pharmacy_name}\n{cart_lines(order.items)}\n"
        f"Livraison : {fcfa(order.fee)}\n"
        f"*Total : {fcfa(order.total)}*\n\n"
        "🛵 Nous cherchons un livreur, vous serez prévenu."
    )


def rule_violation(error: OrderRuleViolation, support_phone: str) -> str:
    if isinstance(error, PrescriptionRequired):
        return error.instructions
    if isinstance(error, PharmacyMismatch):
        return (
            f"⚠️ Votre panier contient déjà des médicaments de *{error.cart_pharmacy}*.\n"
            f"Ce médicament vient de *{error.requested_pharmacy}*.\n\n"
            'Une commande = une pharmacie. Dites "terminer" pour commander ce panier '
            'ou "vider" pour recommencer.'
        )
    if isinstance(error, InsufficientStock):
        return (
            f"❌ *STOCK INSUFFISANT* pour {error.medicine_name}\n"
            f"Il ne reste que *{error.available}* disponible(s).\n\n"
            f"📞 Support : {support_phone}"
        )
    if isinstance(error, InvalidQuantity):
        return "❌ Quantité invalide (1-10)."
    if isinstance(error, UnknownMedicine):
        return "❌ Numéro invalide. Choisissez un numéro de la liste."
    if isinstance(error, EmptyCart):
        return cart_empty()
    if isinstance(error, OutsideServiceZone):
        return (
            "📍 Désolé, nous livrons uniquement à San Pedro.\n"
            "Envoyez une position dans la ville pour continuer."
        )
    if isinstance(error, NoCourierAvailable):
        return (
            f"🛵 Aucun livreur n'est disponible pour la commande {error.order_id} pour le moment.\n"
            f"Notre équipe vous recontacte. Support : {support_phone}"
        )
    if isinstance(error, NoPendingPrescription):
        return "ℹ️ Aucune commande n'attend d'ordonnance."
    if isinstance(error, NotAuthorized):
        return "⛔ Vous n'êtes pas autorisé à traiter cette commande."
    return f"❌ {error}"


# Prescription review

def prescription_received(order_id: str) -> str:
    return (
        f"📸 Ordonnance reçue pour la commande *{order_id}*.\n"
        "⏳ La pharmacie la vérifie, vous recevrez sa réponse ici."
    )


def prescription_review_request(order: Order) -> str:
    lines = [f"📋 *ORDONNANCE À VALIDER* - commande {order.id}", ""]
    lines.extend(f"• {item.medicine_name} x{item.quantity}" for item in order.items)
    if order.prescription_text:
        lines.extend(["", "📝 Lecture automatique :", order.prescription_text[:500]])
    return "\n".join(lines)


def prescription_approved(order: Order, added: Optional[CartItem]) -> str:
    text = f"✅ Votre ordonnance pour la commande *{order.id}* a été validée par la pharmacie."
    if added:
        text += f'\n\n🛒 {added.medicine_name} x{added.quantity} ajouté au panier. Dites "terminer" pour finaliser.'
    return text


def prescription_rejected(order_id: str, support_phone: str) -> str:
    return (
        f"❌ L'ordonnance de la commande *{order_id}* a été refusée par la pharmacie.\n\n"
        "📸 Vous pouvez recommencer avec une photo nette et complète de l'ordonnance.\n"
        f"📞 Support : {support_phone}"
    )


def prescription_timeout_customer(order_id: str, support_phone: str) -> str:
    return (
        f"⌛ La pharmacie n'a pas répondu à temps pour la commande *{order_id}*.\n"
        f"Elle est annulée. Réessayez ou contactez le support : {support_phone}"
    )


def prescription_timeout_pharmacy(order_id: str) -> str:
    return f"⌛ Le délai de validation de l'ordonnance {order_id} est dépassé, la commande est annulée."


def review_recorded(order_id: str, approved: bool) -> str:
    decision = "validée" if approved else "refusée"
    return f"👍 Ordonnance {order_id} {decision}. Merci !"


# Couriers

def courier_offer(order: Order, pharmacy: Optional[Pharmacy], timeout_seconds: float) -> str:
    pickup = pharmacy.address if pharmacy and pharmacy.address else order.pharmacy_name
    dropoff = order.delivery.address if order.delivery and order.delivery.address else "position GPS"
    return (
        f"🛵 *NOUVELLE LIVRAISON* - {order.id}\n\n"
        f"🏥 Retrait : {order.pharmacy_name} ({pickup})\n"
        f"📍 Livraison : {dropoff}\n"
        f"💰 Frais : {fcfa(order.fee)}\n\n"
        f"⏳ Répondez dans les {int(timeout_seconds // 60)} minutes."
    )


def courier_offer_expired(order_id: str) -> str:
    return f"⌛ L'offre de livraison {order_id} a expiré."


def courier_assignment(order: Order, pharmacy: Optional[Pharmacy]) -> str:
    pickup = pharmacy.address if pharmacy and pharmacy.address else ""
    location = ""
    if order.delivery:
        location = f"https://maps.google.com/?q={order.delivery.latitude},{order.delivery.longitude}"
    return (
        f"✅ Livraison *{order.id}* confirmée.\n\n"
        f"🏥 {order.pharmacy_name} {pickup}\n"
        f"📍 Client : {location}\n"
        f"💰 À encaisser : {fcfa(order.total)}\n\n"
        "Appuyez sur le bouton une fois le colis récupéré."
    )


def courier_en_route(order: Order) -> str:
    return f"🛵 Bonne route ! Appuyez sur le bouton une fois la commande {order.id} livrée."


def courier_refusal_recorded(order_id: str) -> str:
    return f"👍 Refus de la livraison {order_id} enregistré."


def courier_delivery_recorded(order: Order) -> str:
    return f"👍 Livraison {order.id} enregistrée. Merci !"


def courier_assigned_customer(order: Order, courier: Courier) -> str:
    return (
        f"🛵 Un livreur a accepté votre commande *{order.id}* !\n"
        f"👤 {courier.name}\n📞 {courier.phone}"
    )


def courier_assigned_pharmacy(order: Order, courier: Courier) -> str:
    return f"🛵 {courier.name} ({courier.phone}) passe récupérer la commande {order.id}."


def order_en_route(order: Order, courier: Courier) -> str:
    return f"🛵 Votre commande *{order.id}* est en route avec {courier.name}."


def order_delivered(order: Order) -> str:
    return f"✅ Commande *{order.id}* livrée. Merci d'avoir choisi Pillbox ! 💊"


def order_unassignable(order_id: str, support_phone: str) -> str:
    return (
        f"😔 Aucun livreur n'a pu prendre la commande *{order_id}*.\n"
        f"Notre équipe vous contacte rapidement. Support : {support_phone}"
    )


# Support notifications

def support_new_order(order: Order) -> str:
    return (
        f"🆕 Commande {order.id} ({order.pharmacy_name})\n"
        f"Client : {order.customer_name or ''} {order.customer_id}\n"
        f"Total : {fcfa(order.total)}"
    )


def support_unassignable(order: Order) -> str:
    return (
        f"🚨 Commande {order.id} sans livreur après {len(order.courier_attempts)} tentative(s).\n"
        f"Client : {order.customer_id}"
    )


def support_prescription_timeout(order: Order) -> str:
    return f"⌛ Ordonnance {order.id} non validée à temps par {order.pharmacy_name}. Client : {order.customer_id}"


def support_new_appointment(appointment: Appointment) -> str:
    return (
        f"📅 Nouveau rendez-vous {appointment.id}\n"
        f"Patient : {appointment.patient_name or ''} {appointment.patient_id}\n"
        f"Clinique : {appointment.clinic_name}\n"
        f"Spécialité : {appointment.specialty}\n"
        f"Date : {appointment.date} à {appointment.time}"
    )


# Pharmacies, clinics and appointments

def on_duty_list(pharmacies: List[Pharmacy], support_phone: str) -> str:
    lines = ["🏥 *PHARMACIES DE GARDE - SAN PEDRO*", ""]
    for number, pharmacy in enumerate(pharmacies, start=1):
        lines.append(f"{number}. *{pharmacy.name}*")
        lines.append(f"   📍 {pharmacy.address or 'San Pedro'}")
        lines.append(f"   ☎ {pharmacy.phone or 'Non disponible'}")
        lines.append(f"   ⏰ {pharmacy.hours or '24h/24'}")
        lines.append("")
    lines.append("💊 Pour commander, écrivez simplement le nom du médicament !")
    lines.append(f"📞 Support : {support_phone}")
    return "\n".join(lines)


def on_duty_empty(support_phone: str) -> str:
    return (
        "🏥 Aucune pharmacie de garde trouvée pour le moment.\n\n"
        f"• Réessayez dans quelques minutes\n• Contactez le support au {support_phone}"
    )


def clinics_list(clinics: List[Clinic], support_phone: str) -> str:
    lines = ["🏥 *CLINIQUES VÉRIFIÉES - SAN PEDRO*", ""]
    for number, clinic in enumerate(clinics, start=1):
        lines.append(f"{number}. *{clinic.name}*")
        lines.append(f"   📍 {clinic.address or 'San Pedro'}")
        if clinic.phone:
            lines.append(f"   ☎ {clinic.phone}")
        if clinic.specialties:
            lines.append(f"   🩺 {', '.join(clinic.specialties)}")
        lines.append("")
    lines.append('📝 Pour prendre rendez-vous : "rendez-vous [spécialité]"')
    lines.append(f"📞 Réservations directes : {support_phone}")
    return "\n".join(lines)


def clinics_empty(support_phone: str) -> str:
    return (
        "🏥 Aucune clinique vérifiée n'est actuellement enregistrée.\n\n"
        f"• Contactez le support : {support_phone}\n• Rendez-vous à l'hôpital local"
    )


def appointment_ask_specialty() -> str:
    return (
        "📅 *PRISE DE RENDEZ-VOUS*\n\n"
        "Avec quel *spécialiste* ?\n"
        "Ex: dermatologue, médecin généraliste, dentiste, gynécologue, pédiatre, cardiologue"
    )


def appointment_no_clinic(specialty: str, available: List[str], support_phone: str) -> str:
    text = f'🔍 Aucune clinique spécialisée en "{specialty}" trouvée.\n\n'
    if available:
        text += "💡 *Spécialités disponibles :*\n" + "\n".join(f"• {item}" for item in available) + "\n\n"
    text += f'Répondez avec une autre spécialité ou "annuler".\n📞 Support : {support_phone}'
    return text


def appointment_clinics(specialty: str, clinics: List[Clinic]) -> str:
    lines = [f"🏥 *CLINIQUES - {specialty.upper()}*", ""]
    for number, clinic in enumerate(clinics, start=1):
        lines.append(f"{number}. *{clinic.name}*")
        lines.append(f"   📍 {clinic.address or 'San Pedro'}")
        if clinic.phone:
            lines.append(f"   📞 {clinic.phone}")
        lines.append("")
    lines.append('Répondez avec le *numéro* de la clinique, ex: "1".')
    return "\n".join(lines)


def appointment_invalid_choice(count: int) -> str:
    return f"❌ Choix invalide. Répondez avec un numéro entre 1 et {count}."


def appointment_ask_date(clinic: Clinic) -> str:
    return (
        f"🏥 *{clinic.name}* sélectionnée.\n\n"
        "📅 Quelle date souhaitez-vous ?\n"
        'Format : JJ/MM/AAAA, ou "demain", "aujourd\'hui".'
    )


def appointment_invalid_date() -> str:
    return '❌ Date invalide. Utilisez JJ/MM/AAAA (date à venir), "demain" ou "aujourd\'hui".'


def appointment_ask_time(date: str) -> str:
    return f"📅 Date : {date}\n\n⏰ À quelle heure ? Format : HH:MM ou 14h30."


def appointment_invalid_time() -> str:
    return "❌ Heure invalide. Exemples : 09:00, 14h30."


def appointment_confirmed(appointment: Appointment, clinic: Clinic, support_phone: str) -> str:
    return (
        "✅ *RENDEZ-VOUS DEMANDÉ !*\n\n"
        f"🏥 {clinic.name}\n"
        f"📍 {clinic.address or 'San Pedro'}\n"
        f"👨‍⚕️ {appointment.specialty}\n"
        f"📅 {appointment.date} à {appointment.time}\n"
        "📋 Statut : en attente de confirmation\n\n"
        f"🔔 Référence : RDV-{(appointment.id or '')[:8]}\n"
        f"📞 Support : {support_phone}"
    )


# Images

def image_search_prompt() -> str:
    return (
        "📸 Image reçue, mais je n'ai pas pu lire le nom du médicament.\n"
        "📝 Écrivez le nom que vous voyez sur la boîte."
    )
